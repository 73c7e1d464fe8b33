"""Единый асинхронный клиент к OpenAI / Anthropic / Gemini / Grok (обычные и стриминговые ответы)."""

from ai_providers.providers.base import LLMClient, LLMResponse, Message, ProviderConfig, ProviderKind
from ai_providers.providers.factory import create_client, create_client_for
from ai_providers.services.errors import (
    ClientError,
    ImageEncodingError,
    InvalidAPIKeyError,
    InvalidResponseError,
    NetworkError,
    RateLimitedError,
    ServerError,
    StreamingError,
)

__version__ = "0.1.0"

__all__ = [
    "ClientError",
    "ImageEncodingError",
    "InvalidAPIKeyError",
    "InvalidResponseError",
    "LLMClient",
    "LLMResponse",
    "Message",
    "NetworkError",
    "ProviderConfig",
    "ProviderKind",
    "RateLimitedError",
    "ServerError",
    "StreamingError",
    "__version__",
    "create_client",
    "create_client_for",
]
