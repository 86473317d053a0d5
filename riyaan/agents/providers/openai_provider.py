"""
OpenAI provider implementation
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from .base import LLMMessage, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    OpenAI provider

    Supports the OpenAI Chat Completions API and any OpenAI-compatible API
    (DeepSeek, Anthropic's compatibility endpoint, local servers) via base_url.

    Example:
        provider = OpenAIProvider("gpt-4.1", api_key="...")

        provider = OpenAIProvider(
            "deepseek-chat",
            base_url="https://api.deepseek.com/v1",
            api_key_env="DEEPSEEK_API_KEY",
            name="deepseek",
        )
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        api_key_env: str = "OPENAI_API_KEY",
        name: str = "openai",
        **kwargs,
    ):
        super().__init__(model, api_key=api_key, base_url=base_url, **kwargs)
        self.api_key_env = api_key_env
        self._name = name

    @property
    def provider_name(self) -> str:
        return self._name

    def get_client(self) -> AsyncOpenAI:
        """Get OpenAI client"""
        if self._client is None:
            # Read the key lazily so credential profile env overrides apply
            api_key = self.api_key or os.getenv(self.api_key_env, "not-needed")
            kwargs: dict[str, Any] = {"api_key": api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)

        return self._client

    def _serialize_tool_call(self, tool_call: dict[str, Any], fallback_id: str) -> dict[str, Any]:
        """Normalize tool call shape for OpenAI Chat Completions."""
        tool_call_id = str(tool_call.get("id") or fallback_id)
        function_name = str(tool_call.get("name") or "unknown_tool")
        function_args = tool_call.get("arguments", {})

        if isinstance(function_args, str):
            arguments_json = function_args
        else:
            try:
                arguments_json = json.dumps(function_args if function_args is not None else {})
            except TypeError:
                arguments_json = json.dumps({"value": str(function_args)})

        return {
            "id": tool_call_id,
            "type": "function",
            "function": {"name": function_name, "arguments": arguments_json},
        }

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert runtime LLM messages to OpenAI chat message schema."""
        openai_messages: list[dict[str, Any]] = []

        for msg_idx, msg in enumerate(messages):
            if msg.role == "assistant":
                assistant_message: dict[str, Any] = {
                    "role": "assistant",
                    "content": msg.content if msg.content is not None else "",
                }
                if msg.tool_calls:
                    assistant_message["tool_calls"] = [
                        self._serialize_tool_call(tc, fallback_id=f"call_{msg_idx}_{tool_idx}")
                        for tool_idx, tc in enumerate(msg.tool_calls)
                    ]
                    # OpenAI allows `content=None` when tool calls are present.
                    if assistant_message["content"] == "":
                        assistant_message["content"] = None
                openai_messages.append(assistant_message)
                continue

            if msg.role == "tool":
                if not msg.tool_call_id:
                    logger.warning(
                        "Skipping tool message without tool_call_id at index %s to avoid OpenAI 400",
                        msg_idx,
                    )
                    continue
                tool_message: dict[str, Any] = {
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content if msg.content is not None else "",
                }
                if msg.name:
                    tool_message["name"] = msg.name
                openai_messages.append(tool_message)
                continue

            openai_messages.append(
                {"role": msg.role, "content": msg.content if msg.content is not None else ""}
            )

        return openai_messages

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[dict] | None = None,
        max_tokens: int = 4096,
        **kwargs,
    ) -> AsyncIterator[LLMResponse]:
        """Stream responses from OpenAI"""
        client = self.get_client()
        openai_messages = self._convert_messages(messages)

        try:
            params: dict[str, Any] = {
                "model": self.model,
                "messages": openai_messages,
                "max_tokens": max_tokens,
                "stream": True,
                **kwargs,
            }
            if tools:
                params["tools"] = tools

            stream = await client.chat.completions.create(**params)

            tool_calls_buffer: dict[int, dict[str, Any]] = {}

            async for chunk in stream:
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    yield LLMResponse(type="text_delta", content=delta.content)

                if delta.tool_calls:
                    for tool_call in delta.tool_calls:
                        idx = tool_call.index
                        if idx not in tool_calls_buffer:
                            tool_calls_buffer[idx] = {
                                "id": tool_call.id or f"call_{idx}",
                                "name": "",
                                "arguments": "",
                            }
                        if tool_call.function and tool_call.function.name:
                            tool_calls_buffer[idx]["name"] = tool_call.function.name
                        if tool_call.function and tool_call.function.arguments:
                            tool_calls_buffer[idx]["arguments"] += tool_call.function.arguments

                if choice.finish_reason:
                    if tool_calls_buffer:
                        tool_calls = []
                        for tc in tool_calls_buffer.values():
                            try:
                                args = json.loads(tc["arguments"]) if tc["arguments"] else {}
                            except json.JSONDecodeError:
                                args = {}
                            tool_calls.append({"id": tc["id"], "name": tc["name"], "arguments": args})
                        yield LLMResponse(type="tool_call", tool_calls=tool_calls)

                    yield LLMResponse(type="done", finish_reason=choice.finish_reason)

        except Exception as e:
            logger.error(f"{self.provider_name} streaming error: {e}")
            yield LLMResponse(type="error", content=str(e))
