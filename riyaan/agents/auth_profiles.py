"""
Auth profile rotation and attempt planning

Tracks failures per credential profile and builds the ordered list of
(provider, model, credential) attempts for a prompt. Profiles that hit their
failure threshold on auth/rate-limit errors cool down for a while; when every
profile of a candidate is cooling down, one bypass attempt is still planned so
a failing system never locks itself out completely.
"""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable, MutableMapping
from dataclasses import dataclass

from .errors import FailureKind, is_cooldown_failure
from .types import (
    DEFAULT_AUTH_COOLDOWN_MS,
    DEFAULT_AUTH_FAILURE_THRESHOLD,
    DEFAULT_PROFILE_ID,
    CredentialProfile,
    ModelCandidate,
)

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CredentialState:
    failures: int = 0
    cooldown_until: int = 0


@dataclass(frozen=True)
class AttemptPlanEntry:
    candidate: ModelCandidate
    profile: CredentialProfile
    bypass_cooldown: bool = False

    @property
    def key(self) -> str:
        """Cache key of the provider session this attempt needs"""
        return f"{self.candidate.provider}::{self.candidate.model}::{self.profile.id}"


def default_profile() -> CredentialProfile:
    return CredentialProfile(id=DEFAULT_PROFILE_ID, priority=0)


def normalize_credential_profiles(
    configured: Iterable[CredentialProfile] | None,
) -> list[CredentialProfile]:
    """
    Deduplicate and sort configured profiles.

    Blank ids are dropped, later definitions of an id replace earlier ones,
    and an empty result yields the synthesized default profile.
    """
    deduped: dict[str, CredentialProfile] = {}
    for profile in configured or ():
        profile_id = (profile.id or "").strip()
        if not profile_id:
            continue
        deduped[profile_id] = profile.model_copy(update={"id": profile_id})

    if not deduped:
        return [default_profile()]

    return sorted(deduped.values(), key=lambda p: p.priority)


def build_model_candidates(
    primary: ModelCandidate,
    fallbacks: Iterable[ModelCandidate] | None = None,
    default: ModelCandidate | None = None,
) -> list[ModelCandidate]:
    """Primary first, then fallbacks, then the default if absent; deduplicated"""
    candidates = [primary, *(fallbacks or ())]
    if default is not None and not any(
        c.provider == default.provider and c.model == default.model for c in candidates
    ):
        candidates.append(default)

    seen: set[tuple[str, str, str]] = set()
    result = []
    for candidate in candidates:
        if not candidate.provider or not candidate.model:
            continue
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        result.append(candidate)
    return result


def activate_profile_env(
    profile: CredentialProfile,
    environ: MutableMapping[str, str] | None = None,
) -> None:
    """Apply a profile's environment overrides to the process environment"""
    env = os.environ if environ is None else environ
    for target, value in profile.env_overrides.items():
        env[target] = value
    for target, source in profile.env_copy_map.items():
        value = env.get(source)
        if value is not None:
            env[target] = value


class AttemptPlanner:
    """
    Per-runtime credential bookkeeping and attempt planning.

    State lives only as long as the planner instance; nothing is shared
    between runtimes.

    Example:
        planner = AttemptPlanner(profiles)
        for attempt in planner.build_plan(candidates):
            ...
            planner.record_failure(attempt.profile, FailureKind.AUTH)
    """

    def __init__(
        self,
        profiles: Iterable[CredentialProfile] | None = None,
        cooldown_ms: int = DEFAULT_AUTH_COOLDOWN_MS,
        failure_threshold: int = DEFAULT_AUTH_FAILURE_THRESHOLD,
        clock: Callable[[], int] = _now_ms,
    ):
        self.profiles = normalize_credential_profiles(profiles)
        self.cooldown_ms = cooldown_ms
        self.failure_threshold = failure_threshold
        self._clock = clock
        self._states: dict[str, CredentialState] = {
            profile.id: CredentialState() for profile in self.profiles
        }

    def state_for(self, profile_id: str) -> CredentialState | None:
        return self._states.get(profile_id)

    def is_ready(self, profile: CredentialProfile, now: int | None = None) -> bool:
        state = self._states.get(profile.id)
        if state is None:
            return True
        return state.cooldown_until <= (self._clock() if now is None else now)

    def resolve_profiles(
        self,
        candidate: ModelCandidate,
        profiles: list[CredentialProfile] | None = None,
    ) -> list[CredentialProfile]:
        """Eligible profiles for a candidate, in ascending priority"""
        pool = self.profiles if profiles is None else profiles

        if candidate.credential_id:
            pinned = next((p for p in pool if p.id == candidate.credential_id), None)
            if pinned is None:
                pinned = CredentialProfile(id=candidate.credential_id, priority=0)
            return [pinned]

        scoped = [p for p in pool if p.allows_provider(candidate.provider)]
        return sorted(scoped or pool, key=lambda p: p.priority)

    def build_plan(
        self,
        candidates: list[ModelCandidate],
        profiles: list[CredentialProfile] | None = None,
        max_attempts: int | None = None,
    ) -> list[AttemptPlanEntry]:
        """
        Build the ordered attempt list for one prompt.

        Args:
            candidates: Model candidates in priority order
            profiles: Profile pool (defaults to the planner's profiles)
            max_attempts: Optional cap (at least one attempt is always kept)

        Returns:
            List of AttemptPlanEntry, non-empty whenever candidates is
        """
        now = self._clock()
        attempts: list[AttemptPlanEntry] = []

        for candidate in candidates:
            eligible = self.resolve_profiles(candidate, profiles)
            ready = [p for p in eligible if self.is_ready(p, now)]

            if ready:
                attempts.extend(AttemptPlanEntry(candidate, p) for p in ready)
                continue

            if eligible:
                logger.warning(
                    f"All credential profiles for {candidate.provider}/{candidate.model} "
                    f"are cooling down, planning bypass attempt with '{eligible[0].id}'"
                )
                attempts.append(AttemptPlanEntry(candidate, eligible[0], bypass_cooldown=True))

        if not attempts:
            pool = self.profiles if profiles is None else profiles
            fallback_profile = pool[0] if pool else default_profile()
            if candidates:
                attempts.append(AttemptPlanEntry(candidates[0], fallback_profile, bypass_cooldown=True))
            else:
                logger.warning("No model candidates configured, cannot plan attempts")

        limit = len(attempts) if max_attempts is None else max(1, max_attempts)
        return attempts[:limit]

    def record_success(self, profile: CredentialProfile) -> None:
        state = self._states.get(profile.id)
        if state is None:
            return
        state.failures = 0
        state.cooldown_until = 0

    def record_failure(self, profile: CredentialProfile, kind: FailureKind) -> None:
        if not is_cooldown_failure(kind):
            return

        state = self._states.setdefault(profile.id, CredentialState())
        state.failures += 1
        threshold = profile.max_failures if profile.max_failures is not None else self.failure_threshold
        if state.failures >= threshold:
            cooldown = profile.cooldown_ms if profile.cooldown_ms is not None else self.cooldown_ms
            state.cooldown_until = self._clock() + cooldown
            logger.warning(
                f"Credential profile '{profile.id}' cooling down for {cooldown}ms "
                f"after {state.failures} {kind.value} failure(s)"
            )
