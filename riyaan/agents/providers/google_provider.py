"""
Google Gemini provider over the native REST API (streamGenerateContent, SSE)
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import AsyncIterator
from typing import Any

import httpx

from .base import LLMMessage, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_THINKING_LEVELS = {
    "low": "LOW",
    "medium": "MEDIUM",
    "high": "HIGH",
    "xhigh": "HIGH",
}


class GoogleGenAIProvider(LLMProvider):
    """
    Provider for Google's Gemini models using the native REST API.
    Supports streamGenerateContent, function calling and thinkingConfig.
    """

    def __init__(
        self,
        model: str = "gemini-3-flash-preview",
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ):
        super().__init__(model, api_key=api_key, base_url=base_url or DEFAULT_GOOGLE_BASE_URL, **kwargs)
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "google"

    def _api_key(self) -> str | None:
        return self.api_key or os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()

    def _convert_messages(self, messages: list[LLMMessage]) -> tuple[list[dict[str, Any]], str | None]:
        """Convert to Gemini contents; system messages become systemInstruction"""
        contents: list[dict[str, Any]] = []
        system_parts: list[str] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(str(msg.content or ""))
                continue

            if msg.role == "tool":
                contents.append({
                    "role": "user",
                    "parts": [{
                        "functionResponse": {
                            "name": msg.name or "tool",
                            "response": {"content": msg.content},
                        }
                    }],
                })
                continue

            role = "model" if msg.role == "assistant" else "user"
            parts: list[dict[str, Any]] = []
            if msg.content:
                parts.append({"text": str(msg.content)})
            for tc in msg.tool_calls or []:
                part: dict[str, Any] = {"functionCall": {"name": tc.get("name"), "args": tc.get("arguments") or {}}}
                # Gemini 3 rejects replayed function calls without their signature
                if tc.get("thought_signature"):
                    part["thoughtSignature"] = tc["thought_signature"]
                parts.append(part)
            if parts:
                contents.append({"role": role, "parts": parts})

        return contents, "\n\n".join(system_parts) or None

    @staticmethod
    def _format_tools(tools: list[dict]) -> list[dict[str, Any]]:
        declarations = []
        for tool in tools:
            fn = tool.get("function", tool)
            declarations.append({
                "name": fn["name"],
                "description": fn.get("description", ""),
                "parameters": fn.get("parameters", {"type": "object", "properties": {}}),
            })
        return [{"functionDeclarations": declarations}]

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[dict] | None = None,
        max_tokens: int = 65535,
        **kwargs,
    ) -> AsyncIterator[LLMResponse]:
        """Stream responses from Gemini API"""
        api_key = self._api_key()
        if not api_key:
            yield LLMResponse(type="error", content="Google API key is required (unauthorized)")
            return

        url = f"{self.base_url}/{self.model}:streamGenerateContent"
        contents, system_instruction = self._convert_messages(messages)

        generation_config: dict[str, Any] = {
            "temperature": kwargs.get("temperature", 1.0),
            "maxOutputTokens": max_tokens,
            "topP": kwargs.get("top_p", 0.95),
        }
        thinking_level = _THINKING_LEVELS.get(self.extra_params.get("thinking_level", "high"))
        if thinking_level:
            generation_config["thinkingConfig"] = {"thinkingLevel": thinking_level}

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if tools:
            payload["tools"] = self._format_tools(tools)

        client = self.get_client()
        tool_calls: list[dict[str, Any]] = []
        finish_reason: str | None = None

        try:
            async with client.stream(
                "POST",
                url,
                params={"alt": "sse", "key": api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                if response.status_code != 200:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Gemini API Error: {response.status_code} - {error_text}")
                    yield LLMResponse(
                        type="error",
                        content=f"Gemini API Error: {response.status_code} {error_text}",
                    )
                    return

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data_text = line[len("data:"):].strip()
                    if not data_text:
                        continue

                    try:
                        data = json.loads(data_text)
                    except json.JSONDecodeError:
                        logger.warning(f"Failed to decode JSON chunk: {data_text[:100]}...")
                        continue

                    candidates = data.get("candidates", [])
                    if not candidates:
                        continue
                    candidate = candidates[0]
                    for part in candidate.get("content", {}).get("parts", []):
                        if part.get("thought"):
                            continue
                        if "text" in part:
                            yield LLMResponse(type="text_delta", content=part["text"])
                        elif "functionCall" in part:
                            call = part["functionCall"]
                            tool_calls.append({
                                "id": f"call_{uuid.uuid4().hex[:12]}",
                                "name": call.get("name", ""),
                                "arguments": call.get("args") or {},
                                "thought_signature": part.get("thoughtSignature"),
                            })
                    finish_reason = candidate.get("finishReason") or finish_reason

        except httpx.HTTPError as e:
            logger.error(f"Gemini network error: {e}")
            yield LLMResponse(type="error", content=f"network error: {e}")
            return

        if tool_calls:
            yield LLMResponse(type="tool_call", tool_calls=tool_calls)
        yield LLMResponse(type="done", finish_reason=(finish_reason or "STOP").lower())
