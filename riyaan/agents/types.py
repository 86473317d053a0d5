"""
Configuration and telemetry models for the agent runtime

Field names are snake_case; camelCase aliases are accepted so configuration
stored by the surrounding application (JSON written by a TypeScript or web
frontend) validates unchanged.
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_PROVIDER = "google"
DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_PROFILE_ID = "default"
DEFAULT_PROFILE_PRIORITY = 100

DEFAULT_RETRY_DELAY_MS = 400
DEFAULT_CONTEXT_OVERFLOW_RETRIES = 2
DEFAULT_TOOL_RESULT_MAX_CHARS = 2_500
DEFAULT_HISTORY_SUMMARY_MAX_CHARS = 12_000
DEFAULT_AUTH_COOLDOWN_MS = 120_000
DEFAULT_AUTH_FAILURE_THRESHOLD = 1


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ModelCandidate(_Model):
    """A provider/model pair, optionally pinned to one credential profile"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    provider: str
    model: str
    credential_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("credential_id", "credentialId", "authProfileId"),
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.provider, self.model, self.credential_id or "")


class CredentialProfile(_Model):
    """
    A named bundle of environment/auth configuration.

    env_overrides are written into the process environment verbatim;
    env_copy_map maps target variable -> source variable and copies the
    current value of the source when it is set.
    """
    id: str
    priority: int = DEFAULT_PROFILE_PRIORITY
    allowed_providers: Optional[list[str]] = Field(
        default=None,
        validation_alias=AliasChoices("allowed_providers", "allowedProviders", "providers"),
    )
    env_overrides: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("env_overrides", "envOverrides", "env"),
    )
    env_copy_map: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("env_copy_map", "envCopyMap", "envFrom"),
    )
    cooldown_ms: Optional[int] = None
    max_failures: Optional[int] = None

    def allows_provider(self, provider: str) -> bool:
        if not self.allowed_providers:
            return True
        return provider in self.allowed_providers


class ToolPolicyRule(_Model):
    effect: Literal["allow", "deny"]
    tools: Optional[list[str]] = None
    groups: Optional[list[str]] = None
    pattern: Optional[str] = None


class ToolPolicyLayer(_Model):
    allow: Optional[list[str]] = None
    deny: Optional[list[str]] = None
    rules: list[ToolPolicyRule] = Field(default_factory=list)


class ToolPolicyConfig(_Model):
    """Layered tool policy: global -> provider -> model -> session"""
    groups: dict[str, list[str]] = Field(default_factory=dict)
    global_: Optional[ToolPolicyLayer] = Field(default=None, alias="global")
    providers: dict[str, ToolPolicyLayer] = Field(default_factory=dict)
    models: dict[str, ToolPolicyLayer] = Field(default_factory=dict)
    session: Optional[ToolPolicyLayer] = None


class ToolParameter(_Model):
    type: Literal["string", "number", "integer", "boolean", "object", "array"]
    description: Optional[str] = None
    required: bool = False
    default: Any = None


class ToolDefinition(_Model):
    """
    Custom tool exposed to the model.

    Executed in-process through ``execute`` (sync or async, called with the
    params dict) or, when ``execute`` is omitted, by POSTing to ``endpoint``.
    """
    name: str
    description: str = ""
    parameters: dict[str, ToolParameter] = Field(default_factory=dict)
    execute: Optional[Callable[..., Any]] = Field(default=None, exclude=True)
    endpoint: Optional[str] = None


class RuntimeOptions(_Model):
    """Retry, recovery and credential rotation knobs"""
    fallback_candidates: list[ModelCandidate] = Field(default_factory=list)
    credential_profiles: list[CredentialProfile] = Field(
        default_factory=list,
        validation_alias=AliasChoices("credential_profiles", "credentialProfiles", "authProfiles"),
    )
    max_attempts: Optional[int] = None
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    context_overflow_retries: int = DEFAULT_CONTEXT_OVERFLOW_RETRIES
    tool_result_max_chars: int = DEFAULT_TOOL_RESULT_MAX_CHARS
    history_summary_max_chars: int = DEFAULT_HISTORY_SUMMARY_MAX_CHARS
    auth_cooldown_ms: int = DEFAULT_AUTH_COOLDOWN_MS
    auth_failure_threshold: int = DEFAULT_AUTH_FAILURE_THRESHOLD
    thinking_level: Literal["off", "low", "medium", "high", "xhigh"] = "high"
    # None keeps provider calls unbounded
    prompt_timeout_s: Optional[float] = None


class AgentConfig(_Model):
    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    tools: Literal["builtin", "none"] | list[ToolDefinition] = "builtin"
    tool_policy: Optional[ToolPolicyConfig] = None
    cwd: Optional[str] = None
    options: RuntimeOptions = Field(
        default_factory=RuntimeOptions,
        validation_alias=AliasChoices("options", "piOptions"),
    )

    @property
    def include_builtin_tools(self) -> bool:
        return self.tools == "builtin"

    @property
    def custom_tools(self) -> list[ToolDefinition]:
        return self.tools if isinstance(self.tools, list) else []


class RunRecord(_Model):
    """Telemetry for a single prompt() call, finalized exactly once"""
    run_id: str
    runtime: str = "riyaan"
    provider: str
    model: str
    credential_id: Optional[str] = None
    status: Literal["success", "error"] = "error"
    started_at: int
    ended_at: int
    duration_ms: int = 0
    attempt_count: int = 0
    fallback_count: int = 0
    context_recovery_count: int = 0
    truncated_chars: int = 0
    prompt_chars: int = 0
    response_chars: int = 0
    failure_reason: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
