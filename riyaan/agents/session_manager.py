"""
Session lifecycle manager

Owns the single live provider session of a runtime. A session is keyed by
(provider, model, credential profile); asking for a different key activates
the profile's environment, resolves the model, filters the tool set through
the tool policy, opens a new session and disposes the previous one.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict

from .auth_profiles import AttemptPlanEntry, activate_profile_env
from .callbacks import CallbacksBridge
from .events import SessionEvent
from .providers.base import ProviderSession, SessionOptions
from .providers.registry import ProviderRegistry
from .tool_policy import ToolPolicyDecision, evaluate_tool_policy, filter_named_tools, tool_name_of
from .tools.base import SessionTool, convert_tools
from .tools.coding import create_coding_tools
from .types import DEFAULT_PROFILE_ID, AgentConfig, ToolDefinition

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Example:
        manager = SessionLifecycleManager(config, registry, on_event=handle_event)
        opened = await manager.ensure_session(attempt)
        text = await manager.active_session.submit("hi")
        await manager.close()
    """

    def __init__(
        self,
        config: AgentConfig,
        registry: ProviderRegistry,
        on_event: Callable[[SessionEvent], None] | None = None,
        bridge: CallbacksBridge | None = None,
        custom_tools: list[ToolDefinition] | None = None,
    ):
        self.config = config
        self.registry = registry
        self.on_event = on_event
        self.bridge = bridge
        self.custom_tools = list(config.custom_tools if custom_tools is None else custom_tools)
        self.last_policy_decision: ToolPolicyDecision | None = None

        self._session: ProviderSession | None = None
        self._key: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._provider: str = config.provider
        self._model: str = config.model
        self._profile_id: str | None = None

    @property
    def active_session(self) -> ProviderSession | None:
        return self._session

    @property
    def active_key(self) -> str | None:
        return self._key

    @property
    def active_provider(self) -> str:
        return self._provider

    @property
    def active_model(self) -> str:
        return self._model

    @property
    def active_profile_id(self) -> str | None:
        """Profile id of the live session (None for the synthesized default)"""
        return self._profile_id

    def _available_tools(self) -> list[SessionTool]:
        builtin = create_coding_tools(self.config.cwd) if self.config.include_builtin_tools else []
        return [*builtin, *convert_tools(self.custom_tools)]

    async def ensure_session(self, attempt: AttemptPlanEntry) -> bool:
        """
        Make sure the live session matches the attempt.

        Returns:
            True when a new session was opened, False when the live one was reused

        Raises:
            ModelResolutionError: The provider/model pair cannot be resolved
        """
        key = attempt.key
        if self._session is not None and self._key == key:
            return False

        candidate = attempt.candidate
        activate_profile_env(attempt.profile)
        handle = self.registry.resolve_model(candidate.provider, candidate.model)

        tools = self._available_tools()
        decision = evaluate_tool_policy(
            [tool_name_of(tool) for tool in tools],
            candidate.provider,
            candidate.model,
            self.config.tool_policy,
        )
        self.last_policy_decision = decision
        allowed_tools = filter_named_tools(tools, decision.allowed_tool_names)
        if decision.blocked_tools:
            logger.info(
                f"Tool policy blocked {len(decision.blocked_tools)} tool(s) for "
                f"{candidate.provider}/{candidate.model}: {', '.join(decision.blocked_names)}"
            )

        session = await self.registry.open_session(
            handle,
            allowed_tools,
            SessionOptions(thinking_level=self.config.options.thinking_level, cwd=self.config.cwd),
        )
        unsubscribe = session.subscribe(self._forward) if self.on_event else None

        if self.bridge:
            await self.bridge.emit_event("tool_policy_applied", {
                "provider": candidate.provider,
                "model": candidate.model,
                "allowedTools": decision.allowed_tool_names,
                "blockedTools": [asdict(blocked) for blocked in decision.blocked_tools],
            })

        previous, previous_unsubscribe = self._session, self._unsubscribe
        self._session = session
        self._unsubscribe = unsubscribe
        self._key = key
        self._provider = candidate.provider
        self._model = candidate.model
        self._profile_id = None if attempt.profile.id == DEFAULT_PROFILE_ID else attempt.profile.id

        if previous is not None and previous is not session:
            await self._dispose(previous, previous_unsubscribe)
        return True

    def _forward(self, event: SessionEvent) -> None:
        if self.on_event:
            self.on_event(event)

    async def _dispose(
        self,
        session: ProviderSession,
        unsubscribe: Callable[[], None] | None,
    ) -> None:
        if unsubscribe:
            unsubscribe()
        try:
            await session.dispose()
        except Exception as e:
            logger.warning(f"Failed to dispose provider session: {e}")

    async def invalidate(self) -> None:
        """Dispose the live session and forget its key, forcing a rebuild"""
        session, unsubscribe = self._session, self._unsubscribe
        self._session = None
        self._unsubscribe = None
        self._key = None
        if session is not None:
            await self._dispose(session, unsubscribe)

    async def close(self) -> None:
        await self.invalidate()
