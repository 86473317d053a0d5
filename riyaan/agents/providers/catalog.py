"""
Static provider and model catalog
"""
from __future__ import annotations

from pydantic import BaseModel, Field

from ..types import DEFAULT_MODEL, DEFAULT_PROVIDER


class ModelInfo(BaseModel):
    id: str
    name: str
    context_window: int = Field(alias="contextWindow")

    model_config = {"populate_by_name": True}


class ProviderInfo(BaseModel):
    id: str
    name: str
    models: list[ModelInfo] = Field(default_factory=list)

    def find_model(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self.models if m.id == model_id), None)


PROVIDERS: list[ProviderInfo] = [
    ProviderInfo(
        id="google",
        name="Google",
        models=[
            ModelInfo(id="gemini-3-flash-preview", name="Gemini 3 Flash (Preview)", context_window=1_000_000),
            ModelInfo(id="gemini-3-pro-preview", name="Gemini 3 Pro (Preview)", context_window=1_000_000),
            ModelInfo(id="gemini-2.5-pro", name="Gemini 2.5 Pro", context_window=1_000_000),
            ModelInfo(id="gemini-2.5-flash", name="Gemini 2.5 Flash", context_window=1_000_000),
        ],
    ),
    ProviderInfo(
        id="anthropic",
        name="Anthropic",
        models=[
            ModelInfo(id="claude-sonnet-4-5-20250929", name="Claude Sonnet 4.5", context_window=200_000),
            ModelInfo(id="claude-haiku-4-5-20251001", name="Claude Haiku 4.5", context_window=200_000),
        ],
    ),
    ProviderInfo(
        id="openai",
        name="OpenAI",
        models=[
            ModelInfo(id="gpt-4o", name="GPT-4o", context_window=128_000),
            ModelInfo(id="o3", name="o3", context_window=200_000),
            ModelInfo(id="o4-mini", name="o4-mini", context_window=128_000),
        ],
    ),
    ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        models=[
            ModelInfo(id="deepseek-chat", name="DeepSeek V3", context_window=64_000),
            ModelInfo(id="deepseek-reasoner", name="DeepSeek R1", context_window=64_000),
        ],
    ),
]


def get_providers() -> list[ProviderInfo]:
    return PROVIDERS


def get_provider_info(provider_id: str) -> ProviderInfo | None:
    return next((p for p in PROVIDERS if p.id == provider_id), None)


def get_default_model() -> tuple[str, str]:
    return DEFAULT_PROVIDER, DEFAULT_MODEL
