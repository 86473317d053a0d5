"""
Platform callbacks for backend integration

AgentCallbacks is a backend-agnostic bundle of optional async hooks
(guardrails, event telemetry, transcripts, run records). CallbacksBridge binds
them to one runtime session and enforces the failure contract: guardrails fail
open and persistence sinks never affect a prompt result.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .types import RunRecord

logger = logging.getLogger(__name__)

GuardrailDirection = Literal["input", "output"]


class GuardrailViolation(BaseModel):
    rule_id: str = Field(default="", alias="ruleId")
    type: str = ""
    action: str = ""
    user_message: Optional[str] = Field(default=None, alias="userMessage")

    model_config = {"populate_by_name": True}


class GuardrailResult(BaseModel):
    allowed: bool = True
    violations: list[GuardrailViolation] = Field(default_factory=list)

    @property
    def user_message(self) -> str | None:
        return self.violations[0].user_message if self.violations else None


class AgentEventRecord(BaseModel):
    """A lifecycle event (state, tool telemetry, policy decisions)"""
    event_type: str = Field(alias="eventType")
    ts: int
    # JSON-encoded payload
    data: Optional[str] = None

    model_config = {"populate_by_name": True}


class TranscriptMessage(BaseModel):
    session_id: str = Field(alias="sessionId")
    room_name: str = Field(alias="roomName")
    participant_identity: str = Field(alias="participantIdentity")
    role: str
    content: str
    is_final: bool = Field(default=True, alias="isFinal")
    created_at: int = Field(alias="createdAt")

    model_config = {"populate_by_name": True}


@dataclass
class AgentCallbacks:
    """
    Optional async hooks supplied by the host application.

    Every hook receives the runtime session id first.
    """
    check_guardrails: Optional[
        Callable[[str, GuardrailDirection, str], Awaitable[GuardrailResult]]
    ] = None
    emit_events: Optional[Callable[[str, list[AgentEventRecord]], Awaitable[None]]] = None
    persist_agent_run: Optional[Callable[[str, RunRecord], Awaitable[None]]] = None
    persist_messages: Optional[Callable[[list[TranscriptMessage]], Awaitable[None]]] = None
    resolve_conversation: Optional[
        Callable[[str, str, int, list[dict[str, Any]]], Awaitable[None]]
    ] = None


class CallbacksBridge:
    """Wrap platform callbacks to include session metadata and absorb failures"""

    def __init__(self, callbacks: AgentCallbacks, session_id: str, runtime: str = "riyaan"):
        self.callbacks = callbacks
        self.session_id = session_id
        self.runtime = runtime
        self._pending: set[asyncio.Task] = set()

    async def check_guardrails(self, content: str, direction: GuardrailDirection) -> GuardrailResult:
        if not self.callbacks.check_guardrails:
            return GuardrailResult()
        try:
            result = await self.callbacks.check_guardrails(content, direction, self.session_id)
        except Exception as e:
            logger.warning(f"Guardrail check ({direction}) failed, allowing content: {e}")
            return GuardrailResult()
        if isinstance(result, dict):
            result = GuardrailResult.model_validate(result)
        return result

    async def emit_event(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        if not self.callbacks.emit_events:
            return
        record = AgentEventRecord(
            event_type=event_type,
            ts=int(time.time() * 1000),
            data=json.dumps({**(data or {}), "runtime": self.runtime}, default=str),
        )
        try:
            await self.callbacks.emit_events(self.session_id, [record])
        except Exception as e:
            logger.warning(f"Failed to emit event '{event_type}': {e}")

    def emit_event_nowait(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Fire-and-forget emit from synchronous code (event listeners)"""
        if not self.callbacks.emit_events:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, dropping event '{event_type}'")
            return
        task = loop.create_task(self.emit_event(event_type, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for outstanding fire-and-forget events"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def persist_messages(self, messages: list[dict[str, Any]], room_name: str) -> None:
        if not self.callbacks.persist_messages:
            return
        transcript = [
            TranscriptMessage(
                session_id=self.session_id,
                room_name=room_name,
                participant_identity="user" if m["role"] == "user" else f"agent-{self.runtime}",
                role=m["role"],
                content=m["content"],
                created_at=m["ts"],
            )
            for m in messages
        ]
        try:
            await self.callbacks.persist_messages(transcript)
        except Exception as e:
            logger.warning(f"Failed to persist {len(transcript)} transcript message(s): {e}")

    async def resolve_conversation(
        self,
        channel: str,
        started_at: int,
        messages: list[dict[str, Any]] | None = None,
    ) -> None:
        if not self.callbacks.resolve_conversation:
            return
        try:
            await self.callbacks.resolve_conversation(self.session_id, channel, started_at, messages or [])
        except Exception as e:
            logger.warning(f"Failed to resolve conversation: {e}")

    async def persist_agent_run(self, run: RunRecord) -> None:
        if not self.callbacks.persist_agent_run:
            return
        try:
            await self.callbacks.persist_agent_run(self.session_id, run)
        except Exception as e:
            logger.warning(f"Failed to persist run {run.run_id}: {e}")
