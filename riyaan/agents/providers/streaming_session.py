"""
Provider session over a streaming LLM client

Keeps the conversation as plain dicts, runs the tool-call loop and publishes
session events (message_start, text_delta, tool_start, tool_end,
message_end) to subscribers.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..errors import ProviderError
from ..events import EventBus, SessionEvent
from ..tools.base import SessionTool, normalize_tool_output
from .base import LLMMessage, LLMProvider, ModelHandle, SessionOptions

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10

_SESSION_EVENT = "event"


class StreamingSession:
    """
    Example:
        session = StreamingSession(provider, handle, tools)
        unsubscribe = session.subscribe(print)
        text = await session.submit("hello")
        await session.dispose()
    """

    def __init__(
        self,
        provider: LLMProvider,
        handle: ModelHandle,
        tools: list[SessionTool] | None = None,
        options: SessionOptions | None = None,
        max_tool_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        self.provider = provider
        self.handle = handle
        self.tools = list(tools or [])
        self.options = options or SessionOptions()
        self.max_tool_iterations = max_tool_iterations
        self.messages: list[dict[str, Any]] = []
        if self.options.system_prompt:
            self.messages.append({"role": "system", "content": self.options.system_prompt})
        self._tools_by_name = {tool.name: tool for tool in self.tools}
        self._bus = EventBus()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> Callable[[], None]:
        self._bus.on(_SESSION_EVENT, listener)
        return lambda: self._bus.off(_SESSION_EVENT, listener)

    def _emit(self, event_type: str, **payload: Any) -> None:
        self._bus.emit(_SESSION_EVENT, SessionEvent(type=event_type, payload=payload))

    def _llm_messages(self) -> list[LLMMessage]:
        return [
            LLMMessage(
                role=m["role"],
                content=m.get("content"),
                tool_calls=m.get("tool_calls"),
                tool_call_id=m.get("tool_call_id"),
                name=m.get("name"),
            )
            for m in self.messages
        ]

    async def submit(self, text: str) -> str:
        """
        Send a user message and run the model until it answers without tools.

        Raises:
            ProviderError: The session is disposed or the provider stream failed
        """
        if self._disposed:
            raise ProviderError("Provider session has been disposed")

        turn_start = len(self.messages)
        self.messages.append({"role": "user", "content": text})
        function_specs = [tool.to_function_spec() for tool in self.tools] or None
        final_text = ""

        self._emit("message_start")
        try:
            for _ in range(self.max_tool_iterations):
                text_parts: list[str] = []
                tool_calls: list[dict[str, Any]] = []

                async for response in self.provider.stream(
                    self._llm_messages(),
                    tools=function_specs,
                    max_tokens=self.handle.max_tokens,
                ):
                    if response.type == "text_delta" and response.content:
                        text_parts.append(response.content)
                        self._emit("text_delta", delta=response.content)
                    elif response.type == "tool_call" and response.tool_calls:
                        tool_calls.extend(response.tool_calls)
                    elif response.type == "error":
                        raise ProviderError(str(response.content))

                final_text = "".join(text_parts)
                assistant: dict[str, Any] = {"role": "assistant", "content": final_text}
                if tool_calls:
                    assistant["tool_calls"] = tool_calls
                self.messages.append(assistant)

                if not tool_calls:
                    break

                for call in tool_calls:
                    await self._run_tool(call)
            else:
                logger.warning(
                    f"Stopped after {self.max_tool_iterations} tool iterations "
                    f"({self.handle.provider}/{self.handle.model})"
                )
        except BaseException:
            # drop a user turn the model never answered
            if len(self.messages) == turn_start + 1:
                del self.messages[turn_start:]
            raise
        finally:
            self._emit("message_end")

        return final_text

    async def _run_tool(self, call: dict[str, Any]) -> None:
        name = call.get("name", "")
        call_id = call.get("id", "")
        args = call.get("arguments") or {}
        self._emit("tool_start", tool_name=name, tool_call_id=call_id, args=args)

        tool = self._tools_by_name.get(name)
        is_error = False
        if tool is None:
            output = f"Error: Tool '{name}' is not available in this session"
            is_error = True
        else:
            try:
                output = normalize_tool_output(await tool.execute(args))
            except Exception as e:
                logger.warning(f"Tool '{name}' failed: {e}")
                output = f"Error: {e}"
                is_error = True

        self._emit("tool_end", tool_name=name, tool_call_id=call_id, result=output, is_error=is_error)
        self.messages.append({"role": "tool", "tool_call_id": call_id, "name": name, "content": output})

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._bus.clear()
        await self.provider.aclose()
