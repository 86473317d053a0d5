"""Tests for SessionLifecycleManager"""

import json
import os
from unittest.mock import AsyncMock

import pytest

from riyaan.agents.auth_profiles import AttemptPlanEntry
from riyaan.agents.callbacks import AgentCallbacks, CallbacksBridge
from riyaan.agents.errors import ModelResolutionError
from riyaan.agents.session_manager import SessionLifecycleManager
from riyaan.agents.types import AgentConfig, CredentialProfile, ModelCandidate, ToolDefinition


def _attempt(provider="google", model="gemini-3-flash-preview", profile_id="default", **profile_kwargs):
    return AttemptPlanEntry(
        ModelCandidate(provider=provider, model=model),
        CredentialProfile(id=profile_id, **profile_kwargs),
    )


class TestEnsureSession:
    """Test session reuse, rebuild and tool filtering"""

    @pytest.mark.asyncio
    async def test_reuse_same_key(self, fake_registry):
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)

        assert await manager.ensure_session(_attempt()) is True
        assert await manager.ensure_session(_attempt()) is False
        assert len(fake_registry.sessions) == 1
        assert manager.active_key == "google::gemini-3-flash-preview::default"
        assert manager.active_profile_id is None

    @pytest.mark.asyncio
    async def test_key_change_disposes_previous(self, fake_registry):
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)

        await manager.ensure_session(_attempt())
        await manager.ensure_session(_attempt(profile_id="backup"))

        first, second = fake_registry.sessions
        assert first.disposed
        assert not second.disposed
        assert manager.active_session is second
        assert manager.active_profile_id == "backup"

    @pytest.mark.asyncio
    async def test_dispose_failure_swallowed(self, fake_registry):
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)
        await manager.ensure_session(_attempt())
        fake_registry.sessions[0].dispose = AsyncMock(side_effect=RuntimeError("already gone"))

        assert await manager.ensure_session(_attempt(model="gemini-2.5-pro")) is True
        assert manager.active_model == "gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_resolution_failure(self, fake_registry):
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)
        with pytest.raises(ModelResolutionError):
            await manager.ensure_session(_attempt(provider="mystery"))
        assert manager.active_session is None

    @pytest.mark.asyncio
    async def test_activates_profile_env(self, fake_registry, monkeypatch):
        monkeypatch.setenv("TEAM_KEY", "team-secret")
        monkeypatch.setenv("GOOGLE_API_KEY", "stale")
        monkeypatch.setenv("EXTRA_FLAG", "0")
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)

        await manager.ensure_session(_attempt(
            profile_id="team",
            env_overrides={"EXTRA_FLAG": "1"},
            env_copy_map={"GOOGLE_API_KEY": "TEAM_KEY"},
        ))

        assert os.environ["EXTRA_FLAG"] == "1"
        assert os.environ["GOOGLE_API_KEY"] == "team-secret"

    @pytest.mark.asyncio
    async def test_tools_filtered_by_policy(self, fake_registry, tmp_path):
        config = AgentConfig.model_validate({
            "cwd": str(tmp_path),
            "toolPolicy": {"providers": {"google": {"deny": ["shell", "lookup"]}}},
        })
        custom = [ToolDefinition(name="lookup", execute=lambda p: None), ToolDefinition(name="notes", execute=lambda p: None)]
        manager = SessionLifecycleManager(config, fake_registry, custom_tools=custom)

        await manager.ensure_session(_attempt())
        assert fake_registry.sessions[0].tool_names == ["read_file", "write_file", "list_files", "notes"]
        assert set(manager.last_policy_decision.blocked_names) == {"run_terminal_command", "lookup"}

        await manager.ensure_session(_attempt(provider="openai", model="gpt-4o"))
        assert "run_terminal_command" in fake_registry.sessions[1].tool_names

    @pytest.mark.asyncio
    async def test_emits_tool_policy_applied(self, fake_registry):
        emit = AsyncMock()
        bridge = CallbacksBridge(AgentCallbacks(emit_events=emit), "s1")
        config = AgentConfig.model_validate({"toolPolicy": {"session": {"deny": ["write_file"]}}})
        manager = SessionLifecycleManager(config, fake_registry, bridge=bridge)

        await manager.ensure_session(_attempt())

        event = emit.await_args.args[1][0]
        data = json.loads(event.data)
        assert event.event_type == "tool_policy_applied"
        assert data["blockedTools"] == [{"name": "write_file", "reason": "session:deny_list"}]
        assert "read_file" in data["allowedTools"]

    @pytest.mark.asyncio
    async def test_events_forwarded(self, fake_registry):
        seen = []
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry, on_event=seen.append)
        await manager.ensure_session(_attempt())

        await manager.active_session.submit("hi")

        assert [e.type for e in seen] == ["message_start", "text_delta", "message_end"]

    @pytest.mark.asyncio
    async def test_invalidate(self, fake_registry):
        manager = SessionLifecycleManager(AgentConfig(tools="none"), fake_registry)
        await manager.ensure_session(_attempt())

        await manager.invalidate()

        assert manager.active_session is None
        assert manager.active_key is None
        assert fake_registry.sessions[0].disposed
        assert await manager.ensure_session(_attempt()) is True
