"""
HTTP-backed AgentCallbacks

Default backend integration: every hook is a POST against the platform API.
Guardrail checks fail open (unreachable or non-2xx -> allowed); the other
sinks raise on non-2xx so CallbacksBridge can log the failure.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .callbacks import (
    AgentCallbacks,
    AgentEventRecord,
    GuardrailDirection,
    GuardrailResult,
    TranscriptMessage,
)
from .types import RunRecord

logger = logging.getLogger(__name__)


class HttpAgentCallbacks:
    """
    Example:
        http_callbacks = HttpAgentCallbacks("https://my-app.example", "support-bot", secret)
        runtime = await AgentRuntime.create(config, callbacks=http_callbacks.as_callbacks())
    """

    def __init__(
        self,
        base_url: str,
        app_slug: str,
        app_secret: str,
        trace_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.app_slug = app_slug
        self.app_secret = app_secret
        self.trace_id = trace_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"X-Trace-Id": trace_id} if trace_id else None,
        )

    def _auth(self) -> dict[str, str]:
        return {"appSlug": self.app_slug, "appSecret": self.app_secret}

    async def _post(self, path: str, payload: dict[str, Any], operation: str) -> httpx.Response:
        response = await self._client.post(path, json={**self._auth(), **payload})
        if response.is_error:
            raise RuntimeError(f"{operation} failed ({response.status_code}): {response.text}")
        return response

    async def emit_events(self, session_id: str, events: list[AgentEventRecord]) -> None:
        if not events:
            return
        await self._post(
            "/api/events",
            {"sessionId": session_id, "events": [e.model_dump(by_alias=True) for e in events]},
            "emitEvents",
        )

    async def persist_messages(self, messages: list[TranscriptMessage]) -> None:
        await self._post(
            "/api/messages",
            {"messages": [m.model_dump(by_alias=True) for m in messages]},
            "persistMessages",
        )

    async def resolve_conversation(
        self,
        session_id: str,
        channel: str,
        started_at: int,
        messages: list[dict[str, Any]],
    ) -> None:
        await self._post(
            "/api/conversations",
            {
                "sessionId": session_id,
                "startedAt": started_at,
                "messages": messages,
                "status": "resolved",
                "channel": channel,
            },
            "resolveConversation",
        )

    async def check_guardrails(
        self,
        content: str,
        direction: GuardrailDirection,
        session_id: str,
    ) -> GuardrailResult:
        try:
            response = await self._client.post(
                "/api/guardrails/check",
                json={**self._auth(), "sessionId": session_id, "content": content, "direction": direction},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Guardrail endpoint unreachable, allowing content: {e}")
            return GuardrailResult()
        if response.is_error:
            logger.warning(f"Guardrail endpoint returned {response.status_code}, allowing content")
            return GuardrailResult()
        return GuardrailResult.model_validate(response.json())

    async def persist_agent_run(self, session_id: str, run: RunRecord) -> None:
        await self._post(
            "/api/agents/session/run",
            {"sessionId": session_id, "run": run.model_dump(by_alias=True, exclude_none=True)},
            "persistAgentRun",
        )

    def as_callbacks(self) -> AgentCallbacks:
        return AgentCallbacks(
            check_guardrails=self.check_guardrails,
            emit_events=self.emit_events,
            persist_agent_run=self.persist_agent_run,
            persist_messages=self.persist_messages,
            resolve_conversation=self.resolve_conversation,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
