"""Tests for credential profiles and attempt planning"""

import pytest

from riyaan.agents.auth_profiles import (
    AttemptPlanner,
    activate_profile_env,
    build_model_candidates,
    normalize_credential_profiles,
)
from riyaan.agents.errors import FailureKind
from riyaan.agents.types import CredentialProfile, ModelCandidate


def _candidate(provider="google", model="gemini-3-flash-preview", **kwargs) -> ModelCandidate:
    return ModelCandidate(provider=provider, model=model, **kwargs)


class TestNormalizeProfiles:
    """Test normalize_credential_profiles"""

    def test_empty_yields_default(self):
        profiles = normalize_credential_profiles([])
        assert [p.id for p in profiles] == ["default"]
        assert profiles[0].priority == 0

    def test_dedupe_and_sort(self):
        profiles = normalize_credential_profiles([
            CredentialProfile(id="b", priority=5),
            CredentialProfile(id="a"),
            CredentialProfile(id="  "),
            CredentialProfile(id="b", priority=1),
        ])
        assert [(p.id, p.priority) for p in profiles] == [("b", 1), ("a", 100)]

    def test_camel_case_aliases(self):
        profile = CredentialProfile.model_validate({
            "id": "team",
            "providers": ["openai"],
            "env": {"OPENAI_API_KEY": "k"},
            "envFrom": {"OPENAI_API_KEY": "TEAM_KEY"},
            "maxFailures": 3,
        })
        assert profile.allowed_providers == ["openai"]
        assert profile.env_overrides == {"OPENAI_API_KEY": "k"}
        assert profile.env_copy_map == {"OPENAI_API_KEY": "TEAM_KEY"}
        assert profile.max_failures == 3


class TestCandidates:
    """Test build_model_candidates"""

    def test_default_appended_and_deduped(self):
        primary = _candidate("openai", "gpt-4o")
        default = _candidate()
        candidates = build_model_candidates(primary, [primary, _candidate("deepseek", "deepseek-chat")], default)
        assert [(c.provider, c.model) for c in candidates] == [
            ("openai", "gpt-4o"),
            ("deepseek", "deepseek-chat"),
            ("google", "gemini-3-flash-preview"),
        ]

    def test_default_not_duplicated(self):
        candidates = build_model_candidates(_candidate(), [], _candidate())
        assert len(candidates) == 1


class TestActivateProfileEnv:
    """Test activate_profile_env"""

    def test_overrides_and_copy(self):
        env = {"SOURCE": "from-source"}
        profile = CredentialProfile(
            id="p",
            env_overrides={"DIRECT": "value"},
            env_copy_map={"TARGET": "SOURCE", "MISSING_TARGET": "MISSING_SOURCE"},
        )
        activate_profile_env(profile, env)
        assert env["DIRECT"] == "value"
        assert env["TARGET"] == "from-source"
        assert "MISSING_TARGET" not in env


class TestAttemptPlanner:
    """Test AttemptPlanner.build_plan and failure bookkeeping"""

    def test_one_attempt_per_ready_profile(self, clock):
        planner = AttemptPlanner(
            [CredentialProfile(id="second", priority=2), CredentialProfile(id="first", priority=1)],
            clock=clock,
        )
        plan = planner.build_plan([_candidate()])
        assert [entry.profile.id for entry in plan] == ["first", "second"]
        assert plan[0].key == "google::gemini-3-flash-preview::first"
        assert not any(entry.bypass_cooldown for entry in plan)

    def test_provider_scoping(self, clock):
        planner = AttemptPlanner(
            [
                CredentialProfile(id="oa", allowed_providers=["openai"]),
                CredentialProfile(id="any"),
            ],
            clock=clock,
        )
        assert [e.profile.id for e in planner.build_plan([_candidate()])] == ["any"]
        assert [e.profile.id for e in planner.build_plan([_candidate("openai", "gpt-4o")])] == ["oa", "any"]

    def test_scoping_falls_back_to_all(self, clock):
        planner = AttemptPlanner([CredentialProfile(id="oa", allowed_providers=["openai"])], clock=clock)
        assert [e.profile.id for e in planner.build_plan([_candidate()])] == ["oa"]

    def test_pinned_profile(self, clock):
        planner = AttemptPlanner([CredentialProfile(id="a"), CredentialProfile(id="b")], clock=clock)
        plan = planner.build_plan([_candidate(credential_id="b"), _candidate(credential_id="ghost")])
        assert [e.profile.id for e in plan] == ["b", "ghost"]
        assert plan[1].profile.priority == 0

    def test_cooling_profile_yields_bypass_attempt(self, clock):
        profile = CredentialProfile(id="only")
        planner = AttemptPlanner([profile], clock=clock)
        planner.record_failure(profile, FailureKind.AUTH)

        plan = planner.build_plan([_candidate()])

        assert len(plan) == 1
        assert plan[0].bypass_cooldown is True
        assert plan[0].profile.id == "only"

    def test_cooldown_expires(self, clock):
        profile = CredentialProfile(id="only")
        planner = AttemptPlanner([profile], cooldown_ms=1_000, clock=clock)
        planner.record_failure(profile, FailureKind.RATE_LIMIT)
        assert not planner.is_ready(profile)

        clock.advance(1_000)
        assert planner.is_ready(profile)
        assert planner.build_plan([_candidate()])[0].bypass_cooldown is False

    def test_ready_profile_preferred_over_cooling(self, clock):
        a, b = CredentialProfile(id="a", priority=1), CredentialProfile(id="b", priority=2)
        planner = AttemptPlanner([a, b], clock=clock)
        planner.record_failure(a, FailureKind.AUTH)
        assert [e.profile.id for e in planner.build_plan([_candidate()])] == ["b"]

    @pytest.mark.parametrize("kind", [FailureKind.TRANSIENT, FailureKind.FATAL, FailureKind.CONTEXT_OVERFLOW])
    def test_non_cooldown_failures_ignored(self, clock, kind):
        profile = CredentialProfile(id="p")
        planner = AttemptPlanner([profile], clock=clock)
        planner.record_failure(profile, kind)
        assert planner.state_for("p").failures == 0
        assert planner.is_ready(profile)

    def test_threshold_and_profile_overrides(self, clock):
        profile = CredentialProfile(id="p", max_failures=2, cooldown_ms=50)
        planner = AttemptPlanner([profile], failure_threshold=1, cooldown_ms=10_000, clock=clock)

        planner.record_failure(profile, FailureKind.AUTH)
        assert planner.is_ready(profile)

        planner.record_failure(profile, FailureKind.AUTH)
        assert planner.state_for("p").cooldown_until == clock.now + 50

    def test_record_success_resets(self, clock):
        profile = CredentialProfile(id="p")
        planner = AttemptPlanner([profile], clock=clock)
        planner.record_failure(profile, FailureKind.AUTH)
        planner.record_success(profile)
        state = planner.state_for("p")
        assert (state.failures, state.cooldown_until) == (0, 0)

    def test_max_attempts(self, clock):
        planner = AttemptPlanner([CredentialProfile(id="a"), CredentialProfile(id="b")], clock=clock)
        candidates = [_candidate(), _candidate("openai", "gpt-4o")]
        assert len(planner.build_plan(candidates)) == 4
        assert len(planner.build_plan(candidates, max_attempts=3)) == 3
        assert len(planner.build_plan(candidates, max_attempts=0)) == 1

    def test_no_candidates(self, clock):
        assert AttemptPlanner(clock=clock).build_plan([]) == []
