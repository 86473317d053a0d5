"""
Base LLM provider interface and the provider session contract
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from ..events import SessionEvent


@dataclass
class LLMMessage:
    """Message for LLM"""
    role: str
    content: Any
    tool_calls: Optional[list[dict]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class LLMResponse:
    """Response from LLM"""
    type: str
    content: Any = None
    tool_calls: Optional[list[dict]] = None
    finish_reason: Optional[str] = None
    usage: Optional[dict] = None


@dataclass(frozen=True)
class ModelHandle:
    """A resolved provider/model pair ready to open sessions against"""
    provider: str
    model: str
    context_window: int = 128_000
    max_tokens: int = 8_192
    base_url: Optional[str] = None


@dataclass
class SessionOptions:
    thinking_level: str = "high"
    cwd: Optional[str] = None
    system_prompt: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ProviderSession(Protocol):
    """
    One open conversation with a model provider.

    ``messages`` is the retained history as plain dicts; the runtime may clip
    tool payloads inside it in place to recover from context overflow.
    """
    messages: list[dict[str, Any]]

    async def submit(self, text: str) -> str: ...

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> Callable[[], None]: ...

    async def dispose(self) -> None: ...


class LLMProvider(ABC):
    """
    Base class for streaming LLM clients

    Supports: OpenAI (and OpenAI-compatible APIs), Google Gemini.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.extra_params = kwargs
        self._client: Optional[Any] = None

    @abstractmethod
    async def stream(
        self,
        messages: list[LLMMessage],
        tools: Optional[list[dict]] = None,
        max_tokens: int = 4096,
        **kwargs,
    ) -> AsyncIterator[LLMResponse]:
        """
        Stream responses from the LLM

        Args:
            messages: List of messages
            tools: Optional OpenAI-style function declarations
            max_tokens: Maximum tokens to generate
            **kwargs: Additional provider-specific parameters

        Yields:
            LLMResponse objects (text_delta, tool_call, done, error)
        """
        yield  # pragma: no cover

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai', 'google')"""

    async def aclose(self) -> None:
        """Release the underlying client, if any"""
        client = self._client
        self._client = None
        if client is not None and hasattr(client, "close"):
            await client.close()
