"""
Resilient agent runtime

Executes prompts against an ordered plan of (provider, model, credential)
attempts. Each attempt reuses or opens the single live provider session,
recovers locally from context overflow (tool payload truncation, then
history compaction with a forced session rebuild), and on other failures
records the error against the credential profile and moves on. Every
prompt() call produces exactly one RunRecord.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from .auth_profiles import AttemptPlanEntry, AttemptPlanner, build_model_candidates
from .callbacks import AgentCallbacks, CallbacksBridge
from .errors import AgentClosedError, ErrorClassification, FailureKind, PromptFailedError, classify_error
from .events import AgentState, EventBus, Listener, SessionEvent
from .plugins import PluginContext, PluginRegistry, PluginService, default_registry
from .providers.catalog import get_default_model
from .providers.registry import ProviderRegistry, create_default_registry
from .session_compaction import (
    MAX_TOOL_NOTES,
    ConversationTurn,
    ToolNote,
    append_turns,
    compact_history,
    compose_prompt_with_summary,
    format_history_summary,
    safe_serialize,
    truncate_text,
    truncate_tool_payloads,
)
from .session_manager import SessionLifecycleManager
from .tool_policy import normalize_tool_name
from .types import AgentConfig, ModelCandidate, RunRecord, ToolDefinition

logger = logging.getLogger(__name__)

RUNTIME_NAME = "riyaan"
INPUT_BLOCKED_MESSAGE = "Input blocked by guardrail policy."
OUTPUT_BLOCKED_MESSAGE = "Response blocked by guardrail policy."


def _now_ms() -> int:
    return int(time.time() * 1000)


class _StartedService:
    def __init__(self, service: PluginService, cleanup: Any):
        self.service = service
        self.cleanup = cleanup


class AgentRuntime:
    """
    Multi-provider agent runtime with fallback, credential rotation and
    context overflow recovery.

    Example:
        runtime = await AgentRuntime.create(AgentConfig(provider="openai", model="gpt-4o"))
        runtime.on("response", lambda delta: print(delta, end=""))
        text = await runtime.prompt("Summarize README.md")
        await runtime.close()
    """

    def __init__(
        self,
        config: AgentConfig | dict[str, Any] | None = None,
        registry: ProviderRegistry | None = None,
        callbacks: AgentCallbacks | None = None,
        plugins: PluginRegistry | None = None,
        session_id: str | None = None,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if isinstance(config, dict):
            config = AgentConfig.model_validate(config)
        self.config = config or AgentConfig()
        self.options = self.config.options
        self.registry = registry or create_default_registry()
        self.plugins = plugins or default_registry
        self.session_id = session_id or f"{RUNTIME_NAME}-{clock()}-{uuid.uuid4().hex[:6]}"

        self._clock = clock
        self._sleep = sleep
        self._bus = EventBus()
        self._state = AgentState.INITIALIZING
        self._bridge = CallbacksBridge(callbacks, self.session_id, RUNTIME_NAME) if callbacks else None

        self._history: list[ConversationTurn] = []
        self._tool_notes: deque[ToolNote] = deque(maxlen=MAX_TOOL_NOTES)
        self._needs_bootstrap = False
        self._run_counter = 0
        self._run_truncated_chars: int | None = None
        self._started_at = clock()
        self._started_services: list[_StartedService] = []
        self._closed = False

        self._candidates = build_model_candidates(
            ModelCandidate(provider=self.config.provider, model=self.config.model),
            self.options.fallback_candidates,
            default=ModelCandidate(provider=get_default_model()[0], model=get_default_model()[1]),
        )
        self._planner = AttemptPlanner(
            self.options.credential_profiles,
            cooldown_ms=self.options.auth_cooldown_ms,
            failure_threshold=self.options.auth_failure_threshold,
            clock=clock,
        )
        self._sessions = SessionLifecycleManager(
            self.config,
            self.registry,
            on_event=self._handle_session_event,
            bridge=self._bridge,
            custom_tools=self._merge_custom_tools(),
        )

    @classmethod
    async def create(cls, config: AgentConfig | dict[str, Any] | None = None, **kwargs) -> AgentRuntime:
        """Build a runtime, open its first session and start plugin services"""
        runtime = cls(config, **kwargs)
        await runtime._start()
        return runtime

    # Public surface

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def history(self) -> list[ConversationTurn]:
        return list(self._history)

    @property
    def tool_notes(self) -> list[ToolNote]:
        return list(self._tool_notes)

    @property
    def planner(self) -> AttemptPlanner:
        return self._planner

    @property
    def sessions(self) -> SessionLifecycleManager:
        return self._sessions

    def on(self, event: str, handler: Listener) -> None:
        self._bus.on(event, handler)

    def off(self, event: str, handler: Listener) -> None:
        self._bus.off(event, handler)

    def _set_state(self, state: AgentState) -> None:
        self._state = state
        self._bus.emit("state_change", state)

    def _merge_custom_tools(self) -> list[ToolDefinition]:
        merged: dict[str, ToolDefinition] = {}
        for tool in [*self.plugins.list_tools(), *self.config.custom_tools]:
            merged[normalize_tool_name(tool.name)] = tool
        return list(merged.values())

    def _plugin_context(self) -> PluginContext:
        return PluginContext(
            session_id=self.session_id,
            cwd=self.config.cwd or "",
            runtime=RUNTIME_NAME,
            get_provider=lambda: self._sessions.active_provider,
            get_model=lambda: self._sessions.active_model,
            emit_event=self._bridge.emit_event if self._bridge else None,
        )

    async def _emit_telemetry(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        if self._bridge:
            await self._bridge.emit_event(event_type, data)

    def _build_plan(self) -> list[AttemptPlanEntry]:
        plan = self._planner.build_plan(self._candidates, max_attempts=self.options.max_attempts)
        if not plan:
            raise PromptFailedError("No model candidates configured")
        return plan

    # Lifecycle

    async def _start(self) -> None:
        warmup_error: BaseException | None = None
        for attempt in self._build_plan():
            try:
                await self._sessions.ensure_session(attempt)
            except Exception as e:
                warmup_error = e
                logger.warning(
                    f"Warm-up failed for {attempt.candidate.provider}/{attempt.candidate.model} "
                    f"(profile '{attempt.profile.id}'): {e}"
                )
                self._planner.record_failure(attempt.profile, classify_error(e).kind)
                continue
            self._planner.record_success(attempt.profile)
            self._needs_bootstrap = False
            warmup_error = None
            break

        if warmup_error is not None:
            self._set_state(AgentState.ERROR)
            raise warmup_error

        self._set_state(AgentState.IDLE)
        await self._emit_telemetry("agent_started", {
            "provider": self._sessions.active_provider,
            "model": self._sessions.active_model,
        })
        await self._start_services()

    async def _start_services(self) -> None:
        services = self.plugins.list_services()
        if not services:
            return
        context = self._plugin_context()
        for service in services:
            try:
                cleanup = service.start(context) if service.start else None
                if asyncio.iscoroutine(cleanup):
                    cleanup = await cleanup
                self._started_services.append(_StartedService(service, cleanup))
            except Exception as e:
                logger.warning(f"Plugin service '{service.name}' failed to start: {e}")
                await self._emit_telemetry("plugin_service_start_failed", {
                    "service": service.name,
                    "error": str(e),
                })

    async def _stop_services(self) -> None:
        if not self._started_services:
            return
        context = self._plugin_context()
        for started in self._started_services:
            name = started.service.name
            try:
                if callable(started.cleanup):
                    result = started.cleanup()
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                logger.warning(f"Plugin service '{name}' cleanup failed: {e}")
                await self._emit_telemetry("plugin_service_cleanup_failed", {"service": name, "error": str(e)})

            try:
                if started.service.stop:
                    result = started.service.stop(context)
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                logger.warning(f"Plugin service '{name}' stop failed: {e}")
                await self._emit_telemetry("plugin_service_stop_failed", {"service": name, "error": str(e)})
        self._started_services.clear()

    def _transcript(self) -> list[dict[str, Any]]:
        if self._history:
            return [{"role": t.role, "content": t.content, "ts": t.ts} for t in self._history]
        session = self._sessions.active_session
        messages = getattr(session, "messages", None) or []
        now = self._clock()
        return [
            {"role": m["role"], "content": str(m.get("content") or ""), "ts": now}
            for m in messages
            if isinstance(m, dict) and m.get("role") in ("user", "assistant")
        ]

    async def close(self) -> None:
        """Stop plugin services, persist the transcript and dispose the session"""
        if self._closed:
            return
        self._closed = True

        await self._stop_services()

        if self._bridge:
            transcript = self._transcript()
            if transcript:
                await self._bridge.persist_messages(transcript, self.session_id)
            await self._bridge.resolve_conversation("terminal", self._started_at)
            await self._bridge.emit_event("agent_closed")

        await self._sessions.close()
        if self._bridge:
            await self._bridge.flush()

        self._set_state(AgentState.CLOSED)
        self._bus.emit("close")

    # Session events

    def _handle_session_event(self, event: SessionEvent) -> None:
        payload = event.payload
        if event.type == "message_start":
            self._set_state(AgentState.PROCESSING)
        elif event.type == "text_delta":
            self._bus.emit("response", payload.get("delta", ""))
        elif event.type == "message_end":
            self._set_state(AgentState.IDLE)
        elif event.type == "tool_start":
            self._bus.emit("tool_call", {"tool": payload.get("tool_name"), "input": payload.get("args")})
            if self._bridge:
                self._bridge.emit_event_nowait("tool_call", {
                    "tool": payload.get("tool_name"),
                    "toolCallId": payload.get("tool_call_id"),
                    "input": payload.get("args"),
                })
        elif event.type == "tool_end":
            self._handle_tool_end(payload)

    def _handle_tool_end(self, payload: dict[str, Any]) -> None:
        raw_output = payload.get("result")
        clipped = truncate_text(safe_serialize(raw_output), self.options.tool_result_max_chars)
        if clipped.truncated_chars and self._run_truncated_chars is not None:
            self._run_truncated_chars += clipped.truncated_chars

        tool_name = str(payload.get("tool_name") or "tool")
        self._tool_notes.append(ToolNote(name=tool_name, output=clipped.value, ts=self._clock()))
        self._bus.emit("tool_result", {
            "tool": tool_name,
            "output": clipped.value if clipped.truncated_chars else raw_output,
        })
        if self._bridge:
            self._bridge.emit_event_nowait("tool_result", {
                "tool": tool_name,
                "toolCallId": payload.get("tool_call_id"),
                "isError": bool(payload.get("is_error")),
                "output": clipped.value,
                "truncatedChars": clipped.truncated_chars,
            })

    # Prompt execution

    async def _submit(self, text: str) -> str:
        session = self._sessions.active_session
        if session is None:
            raise PromptFailedError("No active provider session")
        timeout = self.options.prompt_timeout_s
        if timeout is None:
            return await session.submit(text)
        try:
            return await asyncio.wait_for(session.submit(text), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"provider call timeout after {timeout}s") from None

    async def prompt(self, text: str) -> str:
        """
        Run one prompt through the attempt plan.

        Returns:
            The assistant text, or a guardrail message when input or output
            was blocked

        Raises:
            AgentClosedError: The runtime has been closed
            Exception: The last attempt's error once every attempt failed
        """
        if self._closed:
            raise AgentClosedError("Agent runtime is closed")

        self._set_state(AgentState.PROCESSING)
        self._run_counter += 1
        started_at = self._clock()
        run = RunRecord(
            run_id=f"{self.session_id}-run-{self._run_counter}",
            runtime=RUNTIME_NAME,
            provider=self._sessions.active_provider,
            model=self._sessions.active_model,
            started_at=started_at,
            ended_at=started_at,
            prompt_chars=len(text),
        )
        self._run_truncated_chars = 0
        terminal_error: BaseException | None = None
        classification: ErrorClassification | None = None

        try:
            if self._bridge:
                check = await self._bridge.check_guardrails(text, "input")
                if not check.allowed:
                    message = check.user_message or INPUT_BLOCKED_MESSAGE
                    run.failure_reason = "guardrail_input_blocked"
                    run.error_message = message
                    self._set_state(AgentState.IDLE)
                    return message

            plan = self._build_plan()
            primary_key = plan[0].key
            response: str | None = None

            for index, attempt in enumerate(plan):
                run.attempt_count += 1
                run.failure_reason = None
                run.error_message = None
                if attempt.key != primary_key:
                    run.fallback_count += 1
                if index > 0 and self.options.retry_delay_ms > 0:
                    await self._sleep(self.options.retry_delay_ms / 1000)

                response, terminal_error, classification = await self._run_attempt(attempt, text, run)
                # an empty string is a valid answer; only None marks a failed attempt
                if response is not None:
                    break

            if response is None:
                raise terminal_error or PromptFailedError("Prompt failed across all fallback attempts.")

            self._set_state(AgentState.IDLE)
            return response

        except Exception as e:
            self._set_state(AgentState.ERROR)
            self._bus.emit("error", e)
            raise

        finally:
            self._finalize_run(run, classification)
            if self._bridge:
                await self._bridge.persist_agent_run(run)

    async def _run_attempt(
        self,
        attempt: AttemptPlanEntry,
        text: str,
        run: RunRecord,
    ) -> tuple[str | None, BaseException | None, ErrorClassification | None]:
        """Recovery loop for one plan entry"""
        recoveries = 0
        while True:
            try:
                if await self._sessions.ensure_session(attempt):
                    self._needs_bootstrap = bool(self._history)

                if attempt.bypass_cooldown:
                    await self._emit_telemetry("auth_cooldown_bypassed", {
                        "provider": attempt.candidate.provider,
                        "model": attempt.candidate.model,
                        "authProfileId": attempt.profile.id,
                    })

                summary = ""
                if self._needs_bootstrap:
                    summary = format_history_summary(
                        self._history, list(self._tool_notes), self.options.history_summary_max_chars
                    )
                outgoing = compose_prompt_with_summary(summary, text) if summary else text

                response = await self._submit(outgoing)
                self._needs_bootstrap = False
                self._planner.record_success(attempt.profile)

                if self._bridge:
                    check = await self._bridge.check_guardrails(response, "output")
                    if not check.allowed:
                        run.failure_reason = "guardrail_output_blocked"
                        run.error_message = OUTPUT_BLOCKED_MESSAGE
                        response = OUTPUT_BLOCKED_MESSAGE

                now = self._clock()
                append_turns(
                    self._history,
                    ConversationTurn(role="user", content=text, ts=now),
                    ConversationTurn(role="assistant", content=response, ts=now),
                )

                run.provider = attempt.candidate.provider
                run.model = attempt.candidate.model
                run.credential_id = self._sessions.active_profile_id
                run.response_chars = len(response)
                if run.failure_reason:
                    run.status = "error"
                else:
                    run.status = "success"
                    run.error_message = None
                return response, None, None

            except Exception as e:
                classification = classify_error(e)
                run.failure_reason = classification.reason
                run.error_message = str(e) or type(e).__name__

                if (
                    classification.kind is FailureKind.CONTEXT_OVERFLOW
                    and recoveries < self.options.context_overflow_retries
                ):
                    recoveries += 1
                    run.context_recovery_count += 1
                    await self._recover_context()
                    continue

                logger.warning(
                    f"Attempt {attempt.candidate.provider}/{attempt.candidate.model} "
                    f"(profile '{attempt.profile.id}') failed [{classification.kind.value}]: {e}"
                )
                self._planner.record_failure(attempt.profile, classification.kind)
                return None, e, classification

    async def _recover_context(self) -> None:
        session = self._sessions.active_session
        freed = truncate_tool_payloads(
            getattr(session, "messages", None),
            self.options.tool_result_max_chars,
        )
        if self._run_truncated_chars is not None:
            self._run_truncated_chars += freed
        if freed:
            return

        logger.info("Context overflow persisted, compacting history and rebuilding session")
        self._history[:] = compact_history(self._history)
        await self._sessions.invalidate()
        self._needs_bootstrap = bool(self._history)

    def _finalize_run(self, run: RunRecord, classification: ErrorClassification | None) -> None:
        run.ended_at = self._clock()
        run.duration_ms = run.ended_at - run.started_at
        run.truncated_chars += self._run_truncated_chars or 0
        self._run_truncated_chars = None
        run.provider = self._sessions.active_provider
        run.model = self._sessions.active_model
        if not run.credential_id and self._sessions.active_profile_id:
            run.credential_id = self._sessions.active_profile_id
        if run.status == "error" and classification and not run.failure_reason:
            run.failure_reason = classification.reason
