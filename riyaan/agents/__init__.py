"""
Agent runtime module
"""

from .auth_profiles import AttemptPlanEntry, AttemptPlanner, CredentialState
from .callbacks import AgentCallbacks, CallbacksBridge, GuardrailResult, GuardrailViolation
from .errors import (
    AgentClosedError,
    AgentError,
    ConfigError,
    ErrorClassification,
    FailureKind,
    ModelResolutionError,
    PromptFailedError,
    ProviderError,
    ToolExecutionError,
    classify_error,
    format_error_message,
)
from .events import AgentState, EventBus, SessionEvent
from .http_callbacks import HttpAgentCallbacks
from .plugins import (
    PluginContext,
    PluginRegistry,
    PluginService,
    register_service,
    register_tool,
)
from .runtime import AgentRuntime
from .session_manager import SessionLifecycleManager
from .tool_policy import ToolPolicyDecision, evaluate_tool_policy
from .types import (
    AgentConfig,
    CredentialProfile,
    ModelCandidate,
    RunRecord,
    RuntimeOptions,
    ToolDefinition,
    ToolParameter,
    ToolPolicyConfig,
    ToolPolicyLayer,
    ToolPolicyRule,
)

__all__ = [
    # Runtime
    "AgentRuntime",
    "AgentState",
    "SessionLifecycleManager",
    "EventBus",
    "SessionEvent",
    # Config
    "AgentConfig",
    "RuntimeOptions",
    "ModelCandidate",
    "CredentialProfile",
    "ToolDefinition",
    "ToolParameter",
    "ToolPolicyConfig",
    "ToolPolicyLayer",
    "ToolPolicyRule",
    "RunRecord",
    # Planning / policy
    "AttemptPlanner",
    "AttemptPlanEntry",
    "CredentialState",
    "ToolPolicyDecision",
    "evaluate_tool_policy",
    # Callbacks / plugins
    "AgentCallbacks",
    "CallbacksBridge",
    "GuardrailResult",
    "GuardrailViolation",
    "HttpAgentCallbacks",
    "PluginContext",
    "PluginRegistry",
    "PluginService",
    "register_service",
    "register_tool",
    # Errors
    "AgentError",
    "AgentClosedError",
    "ConfigError",
    "ModelResolutionError",
    "PromptFailedError",
    "ProviderError",
    "ToolExecutionError",
    "ErrorClassification",
    "FailureKind",
    "classify_error",
    "format_error_message",
]
