"""
Agent errors and failure classification

Every error raised while talking to a provider is mapped onto one of five
failure kinds. The kind decides what the prompt loop does next:

- context_overflow: recovered locally (tool payload truncation / compaction)
- auth, rate_limit: credential cooldown, move on to the next attempt
- transient, fatal: move on to the next attempt, no cooldown
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AgentError(Exception):
    """Base class for runtime errors"""


class ModelResolutionError(AgentError):
    """A provider/model pair could not be resolved (static misconfiguration)"""

    def __init__(self, provider: str, model: str, available: list[str] | None = None):
        self.provider = provider
        self.model = model
        self.available = available or []
        message = f'Cannot resolve model "{model}" for provider "{provider}".'
        if self.available:
            message += f" Available providers: {', '.join(self.available)}"
        super().__init__(message)


class ProviderError(AgentError):
    """The provider stream reported an error"""


class PromptFailedError(AgentError):
    """Every planned attempt failed without a usable error to re-raise"""


class ToolExecutionError(AgentError):
    """A custom tool could not be executed"""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class AgentClosedError(AgentError):
    """The runtime was used after close()"""


class ConfigError(AgentError):
    """Configuration file could not be loaded or validated"""


class FailureKind(str, Enum):
    CONTEXT_OVERFLOW = "context_overflow"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorClassification:
    kind: FailureKind
    reason: str


_CONTEXT_HINTS = ("length", "window", "token", "too long", "overflow")
_AUTH_HINTS = (
    "unauthorized",
    "forbidden",
    "api key",
    "authentication",
    "invalid api key",
    "permission denied",
)
_RATE_LIMIT_HINTS = ("rate limit", "quota", "429", "billing")
_TRANSIENT_HINTS = ("timeout", "temporar", "network", "econnreset", "socket hang up")


def _error_message(err: object) -> str:
    if isinstance(err, BaseException):
        text = str(err)
        # TimeoutError() and friends often carry no message
        return text or type(err).__name__
    try:
        return str(err)
    except Exception:
        return repr(err)


def classify_error(err: object) -> ErrorClassification:
    """
    Classify a raised error into a failure kind.

    Matching is done on the lower-cased message, first match wins.

    Args:
        err: Any raised object (exceptions, strings, provider payloads)

    Returns:
        ErrorClassification with kind and a stable reason string
    """
    if isinstance(err, ModelResolutionError):
        return ErrorClassification(FailureKind.FATAL, "provider_resolution_failure")

    normalized = _error_message(err).lower()

    if "context" in normalized and any(hint in normalized for hint in _CONTEXT_HINTS):
        return ErrorClassification(FailureKind.CONTEXT_OVERFLOW, "context_overflow")

    if any(hint in normalized for hint in _AUTH_HINTS):
        return ErrorClassification(FailureKind.AUTH, "auth_failure")

    if any(hint in normalized for hint in _RATE_LIMIT_HINTS):
        return ErrorClassification(FailureKind.RATE_LIMIT, "rate_limit")

    if any(hint in normalized for hint in _TRANSIENT_HINTS):
        return ErrorClassification(FailureKind.TRANSIENT, "transient_error")

    return ErrorClassification(FailureKind.FATAL, "runtime_error")


def is_cooldown_failure(kind: FailureKind) -> bool:
    """Whether a failure kind should count against a credential profile"""
    return kind in (FailureKind.AUTH, FailureKind.RATE_LIMIT)


def format_error_message(err: object) -> str:
    """Human readable one-line error description"""
    classification = classify_error(err)
    return f"[{classification.kind.value}] {_error_message(err)}"
