"""Drive a streamed conversation turn, dispatching tool calls as they come."""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from mcp.types import CallToolResult

from .adapter import adapt_tool_result
from .dispatch import ToolDispatcher
from .errors import ProtocolViolationError
from .registry import ToolRegistry
from .tooling import apply_function_call_mode, chunk_text, finalize_tool_calls
from .types import (
    AssistantTurn,
    Capabilities,
    ChatBackend,
    ChunkCallback,
    TurnEvent,
    TurnState,
    UserMessageSource,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 25
ROUND_LIMIT_NOTICE = "Tool execution stopped after the tool round limit was reached."


class ConversationDriver:
    """Run assistant turns against a streaming chat backend.

    The driver owns the message list and the tool history of one
    conversation. A turn keeps requesting completions while the assistant
    answers with tool calls; tool results are appended in call order and
    satisfy the next request directly.
    """

    def __init__(
        self,
        backend: ChatBackend,
        registry: ToolRegistry,
        *,
        model: str | None = None,
        capabilities: Capabilities | None = None,
        legacy_function_calls: bool = False,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        system_prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._dispatcher = ToolDispatcher(registry)
        self._model = model
        self._capabilities = capabilities or Capabilities()
        self._legacy_function_calls = legacy_function_calls
        self._max_tool_rounds = max_tool_rounds
        self.messages: list[dict[str, Any]] = messages if messages is not None else []
        if system_prompt and not self.messages:
            self.messages.append({"role": "system", "content": system_prompt})
        self.tool_history: list[CallToolResult] = []
        self.state = TurnState.AWAITING_USER_OR_TOOL

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def _ready_for_request(self) -> bool:
        if not self.messages:
            return False
        return self.messages[-1].get("role") in {"user", "tool"}

    def _finish(self, content: str | None = None) -> TurnEvent:
        self.state = TurnState.DONE
        return TurnEvent("done", content=content)

    async def run(
        self,
        *,
        on_chunk: ChunkCallback | None = None,
        next_user_messages: UserMessageSource | None = None,
    ) -> AsyncGenerator[TurnEvent, None]:
        """Yield events until the assistant answers without tool calls.

        ``on_chunk`` sees every text delta before it is yielded; returning
        True drops that delta and abandons the stream. ``next_user_messages``
        supplies the next user messages whenever the conversation needs
        one; without it, a conversation that does not end with a user or
        tool message raises ProtocolViolationError.
        """

        rounds = 0
        while True:
            self.state = TurnState.AWAITING_USER_OR_TOOL
            if not self._ready_for_request():
                if next_user_messages is None:
                    raise ProtocolViolationError(
                        "Cannot request a completion: the last message must "
                        "come from the user or a tool"
                    )
                batch = await next_user_messages()
                if not batch:
                    yield self._finish()
                    return
                self.messages.extend(batch)
                continue

            self.state = TurnState.STREAMING
            turn: AssistantTurn | None = None
            partial: list[str] = []
            cancelled = False
            stream = self._backend.stream_chat(
                list(self.messages),
                self._registry.openai_tools() or None,
                self._model,
            )
            try:
                async for item in stream:
                    if isinstance(item, AssistantTurn):
                        turn = item
                        continue
                    text = chunk_text(item)
                    if not text:
                        continue
                    if on_chunk is not None and on_chunk(text):
                        cancelled = True
                        break
                    partial.append(text)
                    yield TurnEvent("delta", content=text)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if cancelled:
                partial_text = "".join(partial)
                logger.info("Assistant stream cancelled after %d chars", len(partial_text))
                if partial_text:
                    self.messages.append({"role": "assistant", "content": partial_text})
                yield TurnEvent("cancelled", content=partial_text)
                if next_user_messages is None:
                    yield self._finish(partial_text)
                    return
                batch = await next_user_messages()
                if not batch:
                    yield self._finish(partial_text)
                    return
                self.messages.extend(batch)
                continue

            if turn is None:
                raise ProtocolViolationError(
                    "Chat backend ended the stream without a final message"
                )

            message = turn.to_message_dict()
            tool_calls = finalize_tool_calls(message.get("tool_calls"))
            apply_function_call_mode(
                message, tool_calls, legacy=self._legacy_function_calls
            )
            self.messages.append(message)

            if not tool_calls:
                yield self._finish(turn.content)
                return

            if rounds >= self._max_tool_rounds:
                logger.warning(
                    "Stopping after %d tool rounds; skipping %d tool calls",
                    rounds,
                    len(tool_calls),
                )
                for call in tool_calls:
                    self.messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": call["id"],
                            "content": ROUND_LIMIT_NOTICE,
                        }
                    )
                yield TurnEvent("notice", content=ROUND_LIMIT_NOTICE)
                yield self._finish(turn.content)
                return
            rounds += 1

            self.state = TurnState.TOOL_DISPATCH
            for call in tool_calls:
                yield TurnEvent("tool_call", tool_call=call)
                dispatched = await self._dispatcher.invoke(call, self.tool_history)
                parameters = (
                    dispatched.descriptor.parameters
                    if dispatched.descriptor is not None
                    else None
                )
                adapted = adapt_tool_result(
                    call,
                    dispatched.result,
                    self._capabilities,
                    parameters=parameters,
                    substitutions=dispatched.substitutions,
                )
                self.messages.extend(adapted.messages)
                self.tool_history.append(adapted.result)
                yield TurnEvent("tool_result", tool_call=call, result=adapted.result)


__all__ = ["ConversationDriver", "DEFAULT_MAX_TOOL_ROUNDS", "ROUND_LIMIT_NOTICE"]
