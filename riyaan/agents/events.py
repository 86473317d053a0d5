"""
Agent event bus

Explicit observer registry: event name -> ordered set of handlers.
Emission is synchronous so listeners observe events in the exact order the
runtime produces them (a state_change always precedes the response deltas
that follow it).
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

AgentEventType = Literal[
    "state_change",
    "response",
    "tool_call",
    "tool_result",
    "error",
    "close",
]

SessionEventType = Literal[
    "message_start",
    "text_delta",
    "message_end",
    "tool_start",
    "tool_end",
]


class AgentState(str, Enum):
    INITIALIZING = "initializing"
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"
    CLOSED = "closed"


@dataclass
class SessionEvent:
    """Event streamed by a provider session"""
    type: SessionEventType
    payload: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Synchronous publish/subscribe registry.

    Handlers for one event run in registration order; a failing handler is
    logged and does not stop the others.
    """

    def __init__(self) -> None:
        # dict keys double as an insertion-ordered set
        self._listeners: dict[str, dict[Listener, None]] = {}

    def on(self, event: str, handler: Listener) -> None:
        self._listeners.setdefault(event, {})[handler] = None

    def off(self, event: str, handler: Listener) -> None:
        handlers = self._listeners.get(event)
        if handlers is not None:
            handlers.pop(handler, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, {}))

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, {})):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}", exc_info=True)

    def clear(self) -> None:
        self._listeners.clear()
