"""Launch and supervise a local llama.cpp server."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections import deque
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_TIMEOUT = 600.0
_LISTENING_PATTERN = re.compile(
    r"server is listening on http://\d+\.\d+\.\d+\.\d+:(\d+)"
)
_LOG_HISTORY = 200


def parse_listening_port(line: str) -> int | None:
    """Return the port from llama-server's "listening" log line."""

    match = _LISTENING_PATTERN.search(line)
    if match is None:
        return None
    return int(match.group(1))


class LlamaServer:
    """Run ``llama-server`` for one Hugging Face model and report its URL.

    The server binds to every interface only when an API key protects it.
    """

    def __init__(
        self,
        model: str,
        *,
        binary: str = "llama-server",
        host: str | None = None,
        port: int = 0,
        api_key: str | None = None,
        cache_dir: Path | None = None,
        advertise_host: str = "127.0.0.1",
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
    ) -> None:
        self._model = model
        self._binary = binary
        self._host = host or ("0.0.0.0" if api_key else "127.0.0.1")
        self._port = port
        self._api_key = api_key
        self._cache_dir = cache_dir
        self._advertise_host = advertise_host
        self._startup_timeout = startup_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._log_tasks: list[asyncio.Task] = []
        self._recent_output: deque[str] = deque(maxlen=_LOG_HISTORY)
        self._listening: asyncio.Future[int] | None = None
        self.base_url: str | None = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def recent_output(self) -> list[str]:
        return list(self._recent_output)

    def build_command(self) -> list[str]:
        command = [
            self._binary,
            "-hf",
            self._model,
            "-ngl",
            "999",
            "--host",
            self._host,
            "--port",
            str(self._port),
            "--jinja",
        ]
        if self._api_key:
            command.extend(["--api-key", self._api_key])
        return command

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._cache_dir is not None:
            env["LLAMA_CACHE"] = str(self._cache_dir)
        return env

    def _record_output(self, label: str, text: str) -> None:
        self._recent_output.append(f"[{label}] {text}")
        logger.debug("llama-server %s: %s", label, text)
        if self._listening is not None and not self._listening.done():
            port = parse_listening_port(text)
            if port is not None:
                self._listening.set_result(port)

    async def _drain_stream(self, stream: asyncio.StreamReader, label: str) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if not text:
                continue
            self._record_output(label, text)

    async def start(self) -> str:
        """Start the server and return its OpenAI-compatible base URL."""

        if self.base_url is not None and self.is_running:
            return self.base_url

        command = self.build_command()
        logger.info("Starting llama-server for model %s", self._model)
        self._listening = asyncio.get_running_loop().create_future()
        process = await asyncio.create_subprocess_exec(
            *command,
            env=self._environment(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._process = process
        logger.info("llama-server spawned with pid=%s", process.pid)

        for stream, label in ((process.stdout, "stdout"), (process.stderr, "stderr")):
            if stream is not None:
                self._log_tasks.append(
                    asyncio.create_task(self._drain_stream(stream, label))
                )

        exited = asyncio.create_task(process.wait())
        try:
            done, _ = await asyncio.wait(
                {self._listening, exited},
                timeout=self._startup_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not exited.done():
                exited.cancel()

        if self._listening in done:
            port = self._listening.result()
            self.base_url = f"http://{self._advertise_host}:{port}/v1"
            logger.info("llama-server is listening at %s", self.base_url)
            return self.base_url

        await self.stop()
        output = "\n".join(self._recent_output)
        if exited in done:
            raise RuntimeError(
                f"llama-server exited with code {process.returncode} before it "
                f"started listening:\n{output}"
            )
        raise RuntimeError(
            f"llama-server did not start listening within "
            f"{self._startup_timeout}s:\n{output}"
        )

    async def stop(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            logger.info("Stopping llama-server (pid=%s)", process.pid)
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=3.0)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        for task in self._log_tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001
                logger.debug("llama-server log task error: %s", exc)
        self._log_tasks.clear()
        self._process = None
        self.base_url = None


__all__ = ["LlamaServer", "parse_listening_port"]
