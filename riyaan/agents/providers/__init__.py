from .base import LLMMessage, LLMProvider, LLMResponse, ModelHandle, ProviderSession, SessionOptions
from .catalog import ModelInfo, ProviderInfo, get_default_model, get_providers
from .google_provider import GoogleGenAIProvider
from .openai_provider import OpenAIProvider
from .registry import ProviderRegistry, create_default_registry
from .streaming_session import StreamingSession

__all__ = [
    "LLMProvider",
    "LLMMessage",
    "LLMResponse",
    "ModelHandle",
    "ProviderSession",
    "SessionOptions",
    "ModelInfo",
    "ProviderInfo",
    "get_default_model",
    "get_providers",
    "GoogleGenAIProvider",
    "OpenAIProvider",
    "ProviderRegistry",
    "create_default_registry",
    "StreamingSession",
]
