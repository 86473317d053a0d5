"""
Provider registry

Maps a provider id to a client factory. ``resolve_model`` validates a
(provider, model) pair and ``open_session`` opens a StreamingSession over a
fresh client, so credentials activated just before opening are picked up.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import ModelResolutionError
from ..tools.base import SessionTool
from .base import LLMProvider, ModelHandle, ProviderSession, SessionOptions
from .catalog import get_provider_info
from .google_provider import GoogleGenAIProvider
from .openai_provider import OpenAIProvider
from .streaming_session import StreamingSession

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ModelHandle, SessionOptions], LLMProvider]

DEFAULT_CONTEXT_WINDOW = 128_000

DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"
ANTHROPIC_OPENAI_COMPAT_URL = "https://api.anthropic.com/v1/"


@dataclass
class ProviderEntry:
    factory: ProviderFactory
    base_url: str | None = None
    max_tokens: int = 8_192


class ProviderRegistry:
    """
    Example:
        registry = create_default_registry()
        handle = registry.resolve_model("google", "gemini-3-flash-preview")
        session = await registry.open_session(handle, tools, SessionOptions())
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderEntry] = {}

    def register(
        self,
        provider_id: str,
        factory: ProviderFactory,
        base_url: str | None = None,
        max_tokens: int = 8_192,
    ) -> None:
        self._providers[provider_id] = ProviderEntry(factory, base_url, max_tokens)

    def providers(self) -> list[str]:
        return sorted(self._providers)

    def resolve_model(self, provider: str, model: str) -> ModelHandle:
        """
        Resolve a provider/model pair into a handle.

        Raises:
            ModelResolutionError: Unknown provider or empty model id
        """
        entry = self._providers.get(provider)
        if entry is None or not (model or "").strip():
            raise ModelResolutionError(provider, model, self.providers())

        context_window = DEFAULT_CONTEXT_WINDOW
        info = get_provider_info(provider)
        model_info = info.find_model(model) if info else None
        if model_info is not None:
            context_window = model_info.context_window
        else:
            logger.debug(f"Model {provider}/{model} not in catalog, using default context window")

        return ModelHandle(
            provider=provider,
            model=model,
            context_window=context_window,
            max_tokens=entry.max_tokens,
            base_url=entry.base_url,
        )

    async def open_session(
        self,
        handle: ModelHandle,
        tools: list[SessionTool],
        options: SessionOptions,
    ) -> ProviderSession:
        entry = self._providers.get(handle.provider)
        if entry is None:
            raise ModelResolutionError(handle.provider, handle.model, self.providers())
        client = entry.factory(handle, options)
        logger.info(f"Opened {handle.provider}/{handle.model} session with {len(tools)} tool(s)")
        return StreamingSession(client, handle, tools, options)


def _openai_factory(api_key_env: str, name: str) -> ProviderFactory:
    def factory(handle: ModelHandle, options: SessionOptions) -> LLMProvider:
        return OpenAIProvider(
            handle.model,
            base_url=handle.base_url,
            api_key_env=api_key_env,
            name=name,
        )

    return factory


def _google_factory(handle: ModelHandle, options: SessionOptions) -> LLMProvider:
    return GoogleGenAIProvider(
        model=handle.model,
        base_url=handle.base_url,
        thinking_level=options.thinking_level,
    )


def create_default_registry() -> ProviderRegistry:
    """Registry with google, openai, anthropic and deepseek backends"""
    registry = ProviderRegistry()
    registry.register("google", _google_factory, max_tokens=65_535)
    registry.register("openai", _openai_factory("OPENAI_API_KEY", "openai"))
    registry.register(
        "anthropic",
        _openai_factory("ANTHROPIC_API_KEY", "anthropic"),
        base_url=ANTHROPIC_OPENAI_COMPAT_URL,
    )
    registry.register(
        "deepseek",
        _openai_factory("DEEPSEEK_API_KEY", "deepseek"),
        base_url=DEEPSEEK_BASE_URL,
    )
    return registry
