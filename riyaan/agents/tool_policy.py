"""
Tool policy system

Layered allow/deny resolution over the tool set a model session is offered.

Resolution order (later layers win for every tool they touch):
1. global
2. provider:<provider>
3. model:<model>
4. session

Each layer runs three steps:
- allow: a non-empty allow list resets the allow-set to exactly its members
- deny: explicit deny list
- rules: sequential allow/deny rules matched by name, group or regex
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from .types import ToolPolicyConfig, ToolPolicyLayer, ToolPolicyRule

logger = logging.getLogger(__name__)

DEFAULT_TOOL_GROUPS: dict[str, list[str]] = {
    "filesystem": [
        "list_files",
        "read_file",
        "write_file",
        "search_files",
        "replace_in_file",
        "create_file",
        "delete_file",
    ],
    "shell": ["run_terminal_command"],
    "network": ["http_request", "fetch_url"],
    "vcs": ["git_status", "git_diff", "git_commit", "git_push"],
}

_TOOL_NAME_SEGMENT = re.compile(r"[^a-zA-Z0-9_:-]+")

T = TypeVar("T")


def normalize_tool_name(value: str) -> str:
    """Strip every character outside [A-Za-z0-9_:-]"""
    return _TOOL_NAME_SEGMENT.sub("", value.strip())


@dataclass(frozen=True)
class BlockedTool:
    name: str
    reason: str


@dataclass
class ToolPolicyDecision:
    allowed_tool_names: list[str] = field(default_factory=list)
    blocked_tools: list[BlockedTool] = field(default_factory=list)

    @property
    def blocked_names(self) -> list[str]:
        return [blocked.name for blocked in self.blocked_tools]


@dataclass
class _ToolState:
    allowed: bool = True
    reason: str | None = None


class ToolPolicyResolver:
    """
    Resolve a ToolPolicyConfig for one provider/model context.

    Example:
        resolver = ToolPolicyResolver(policy)
        decision = resolver.evaluate(["read_file", "run_terminal_command"], "google", "gemini-2.5-pro")
    """

    def __init__(self, policy: ToolPolicyConfig | None = None):
        self.policy = policy
        self.groups: dict[str, list[str]] = {**DEFAULT_TOOL_GROUPS}
        if policy and policy.groups:
            self.groups.update(policy.groups)

    def evaluate(self, tool_names: Iterable[str], provider: str, model: str) -> ToolPolicyDecision:
        normalized = [name for name in (normalize_tool_name(raw) for raw in tool_names) if name]
        # dict keeps first-seen order while collapsing duplicates
        states: dict[str, _ToolState] = {name: _ToolState() for name in normalized}

        if self.policy is None:
            return ToolPolicyDecision(allowed_tool_names=list(states))

        policy = self.policy
        self._apply_layer(states, "global", policy.global_)
        self._apply_layer(states, f"provider:{provider}", policy.providers.get(provider))
        self._apply_layer(states, f"model:{model}", policy.models.get(model))
        self._apply_layer(states, "session", policy.session)

        decision = ToolPolicyDecision()
        for name, state in states.items():
            if state.allowed:
                decision.allowed_tool_names.append(name)
            else:
                decision.blocked_tools.append(BlockedTool(name, state.reason or "policy_blocked"))

        logger.debug(
            f"Resolved tool policy for {provider}/{model}: "
            f"{len(decision.allowed_tool_names)} allowed, {len(decision.blocked_tools)} blocked"
        )
        return decision

    def expand_names(self, names: Iterable[str] | None) -> set[str]:
        """Normalize names and expand group references into their members"""
        result: set[str] = set()
        for raw in names or ():
            name = normalize_tool_name(raw)
            if not name:
                continue
            group = self.groups.get(name)
            if group:
                result.update(n for n in (normalize_tool_name(member) for member in group) if n)
                continue
            result.add(name)
        return result

    def _matches_rule(self, tool_name: str, rule: ToolPolicyRule) -> bool:
        if tool_name in self.expand_names(rule.tools):
            return True
        if tool_name in self.expand_names(rule.groups):
            return True
        if rule.pattern:
            try:
                return re.search(rule.pattern, tool_name) is not None
            except re.error:
                logger.warning(f"Ignoring invalid tool policy pattern: {rule.pattern!r}")
                return False
        return False

    def _apply_layer(
        self,
        states: dict[str, _ToolState],
        layer_name: str,
        layer: ToolPolicyLayer | None,
    ) -> None:
        if layer is None:
            return

        allowed = self.expand_names(layer.allow)
        denied = self.expand_names(layer.deny)

        if allowed:
            for name, state in states.items():
                state.allowed = name in allowed
                if not state.allowed:
                    state.reason = f"{layer_name}:not_allowed"
                elif state.reason and state.reason.startswith(layer_name):
                    state.reason = None

        for name in denied:
            state = states.get(name)
            if state is None:
                continue
            state.allowed = False
            state.reason = f"{layer_name}:deny_list"

        for rule in layer.rules:
            for name, state in states.items():
                if not self._matches_rule(name, rule):
                    continue
                if rule.effect == "allow":
                    state.allowed = True
                    if state.reason and state.reason.startswith(layer_name):
                        state.reason = None
                else:
                    state.allowed = False
                    state.reason = f"{layer_name}:rule_deny"


def evaluate_tool_policy(
    tool_names: Iterable[str],
    provider: str,
    model: str,
    policy: ToolPolicyConfig | None = None,
) -> ToolPolicyDecision:
    """
    Evaluate a layered tool policy for a provider/model context.

    Args:
        tool_names: Candidate tool names (normalized before evaluation)
        provider: Provider id of the session being opened
        model: Model id of the session being opened
        policy: Optional policy; without one every tool is allowed

    Returns:
        ToolPolicyDecision partitioning the normalized input names
    """
    return ToolPolicyResolver(policy).evaluate(tool_names, provider, model)


def tool_name_of(tool: object) -> str:
    """Normalized name of a tool object (name, falling back to label)"""
    raw = getattr(tool, "name", None) or getattr(tool, "label", None) or ""
    return normalize_tool_name(str(raw))


def filter_named_tools(tools: Iterable[T], allowed_tool_names: Iterable[str]) -> list[T]:
    """Keep only tools whose normalized name is in the allowed set"""
    allowed = {normalize_tool_name(name) for name in allowed_tool_names}
    result = []
    for tool in tools:
        name = tool_name_of(tool)
        if name and name in allowed:
            result.append(tool)
    return result
