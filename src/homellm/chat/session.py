"""Bridge a line-oriented byte stream to a conversation driver.

User keystrokes arrive as raw bytes and are edited into lines; submitted
lines feed a queue that the driver reads whenever it needs a user message.
Assistant output and tool narration are written back as bytes as soon as
they are produced.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from contextlib import suppress
from typing import Any, AsyncIterable, AsyncIterator

from .driver import ConversationDriver

logger = logging.getLogger(__name__)

PROMPT = "> "
_ERASE = {"\x7f", "\x08"}


class LineEditor:
    """Minimal line editing: printable input, backspace and enter."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer: list[str] = []
        self._after_cr = False

    def feed(self, data: bytes) -> tuple[str, list[str]]:
        """Consume input bytes, returning the echo text and submitted lines."""

        echo: list[str] = []
        lines: list[str] = []
        for char in self._decoder.decode(data):
            if char == "\n" and self._after_cr:
                self._after_cr = False
                continue
            self._after_cr = char == "\r"
            if char in {"\r", "\n"}:
                lines.append("".join(self._buffer))
                self._buffer.clear()
                echo.append("\r\n")
            elif char in _ERASE:
                if self._buffer:
                    self._buffer.pop()
                    echo.append("\b \b")
            elif char.isprintable():
                self._buffer.append(char)
                echo.append(char)
        return "".join(echo), lines


class ChatSession:
    """Run one interactive chat over a byte stream."""

    def __init__(self, driver: ConversationDriver, *, name: str = "Assistant"):
        self._driver = driver
        self._name = name
        self._editor = LineEditor()
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._output: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.processing = False

    @property
    def driver(self) -> ConversationDriver:
        return self._driver

    def _write(self, text: str) -> None:
        if text:
            self._output.put_nowait(text.encode("utf-8"))

    def _submit(self, line: str) -> None:
        if not line:
            self._write(PROMPT)
            return
        if self.processing:
            logger.debug("Ignoring input while a turn is in progress")
            return
        self.processing = True
        self._lines.put_nowait(line)

    async def _read_input(self, source: AsyncIterable[bytes]) -> None:
        try:
            async for chunk in source:
                if not isinstance(chunk, (bytes, bytearray)):
                    continue
                echo, lines = self._editor.feed(bytes(chunk))
                self._write(echo)
                for line in lines:
                    self._submit(line)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Chat session input failed: %s", exc)
        finally:
            self._lines.put_nowait(None)

    async def _next_line(self) -> str | None:
        line = await self._lines.get()
        if line is None:
            # keep the end-of-input marker for any later reader
            self._lines.put_nowait(None)
        return line

    async def _next_user_messages(self) -> list[dict[str, Any]] | None:
        self.processing = False
        self._write(PROMPT)
        line = await self._next_line()
        if line is None:
            return None
        return [{"role": "user", "content": line}]

    async def _run_turn(self, line: str) -> None:
        messages = self._driver.messages
        checkpoint = len(messages)
        messages.append({"role": "user", "content": line})
        printed_name = False
        try:
            async for event in self._driver.run(
                next_user_messages=self._next_user_messages
            ):
                if event.kind == "delta":
                    if not printed_name:
                        printed_name = True
                        self._write(f"\n\n{self._name}:\n\n")
                    self._write(event.content or "")
                elif event.kind == "tool_call" and event.tool_call is not None:
                    function = event.tool_call.get("function") or {}
                    self._write(
                        f"\n\n{self._name}:\n\nCalling tool: "
                        f"{function.get('name')} - {function.get('arguments')}\n\n"
                    )
                elif event.kind == "tool_result":
                    printed_name = False
                elif event.kind == "cancelled":
                    printed_name = False
                    self._write("\n\n")
                elif event.kind == "notice":
                    self._write(f"\n\n{event.content}\n\n")
                elif event.kind == "done":
                    self._write("\n\n")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Chat turn failed")
            del messages[checkpoint:]
            self._write(f"\n\nChat error (restarting):\n\n{exc}\n\n")
        finally:
            self.processing = False

    async def _work(self) -> None:
        while True:
            line = await self._next_line()
            if line is None:
                return
            await self._run_turn(line)
            self._write(PROMPT)

    async def connect(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Consume ``source`` and yield the session output.

        The output ends once the input has ended and any turn in progress
        has finished.
        """

        reader = asyncio.create_task(self._read_input(source))
        worker = asyncio.create_task(self._work())
        worker.add_done_callback(lambda _: self._output.put_nowait(None))
        self._write(PROMPT)
        try:
            while True:
                chunk = await self._output.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            for task in (reader, worker):
                task.cancel()
            for task in (reader, worker):
                with suppress(asyncio.CancelledError):
                    await task


__all__ = ["ChatSession", "LineEditor", "PROMPT"]
