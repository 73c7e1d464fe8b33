"""Фабрика клиентов провайдеров (новый клиент на каждый вызов, без сети)."""

from __future__ import annotations

import httpx

from ai_providers.providers.anthropic import AnthropicClient
from ai_providers.providers.base import LLMClient, ProviderConfig, ProviderKind
from ai_providers.providers.gemini import GeminiClient
from ai_providers.providers.openai_compat import OpenAICompatibleClient, base_url_for
from ai_providers.settings import Settings, get_settings


def create_client(
    config: ProviderConfig,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> LLMClient:
    """Возвращает клиента под `config.kind` (OpenAI и Grok: один класс, разные адреса)."""
    settings = settings or get_settings()
    kind = config.kind
    if kind in (ProviderKind.OPENAI, ProviderKind.GROK):
        return OpenAICompatibleClient(
            config,
            base_url=base_url_for(kind, settings),
            settings=settings,
            client=client,
        )
    if kind is ProviderKind.ANTHROPIC:
        return AnthropicClient(config, settings=settings, client=client)
    return GeminiClient(config, settings=settings, client=client)


def create_client_for(
    kind: ProviderKind | str,
    api_key: str,
    model: str | None = None,
    *,
    settings: Settings | None = None,
) -> LLMClient:
    """Короткий вариант: конфиг с дефолтами для вида провайдера."""
    return create_client(ProviderConfig(kind=ProviderKind(kind), api_key=api_key, model=model), settings=settings)
