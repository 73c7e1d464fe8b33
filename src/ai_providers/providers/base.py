"""Модель данных, общая для всех диалектов, и интерфейс клиента провайдера."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Literal, Protocol, Sequence

Role = Literal["system", "user", "assistant"]
TokenCallback = Callable[[str], None]

_DEFAULT_MODELS: dict[str, tuple[str, ...]] = {
    "openai": ("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-4.1-nano"),
    "anthropic": ("claude-sonnet-4-5-20250929", "claude-haiku-4-5-20251001", "claude-opus-4-5-20251101"),
    "gemini": ("gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash"),
    "grok": ("grok-4-1-fast", "grok-4", "grok-4-fast", "grok-3"),
}


class ProviderKind(str, Enum):
    """Вид провайдера. Grok говорит на том же диалекте, что и OpenAI."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"

    @property
    def display_name(self) -> str:
        return {"openai": "OpenAI", "anthropic": "Anthropic", "gemini": "Gemini", "grok": "Grok"}[self.value]

    @property
    def default_models(self) -> tuple[str, ...]:
        return _DEFAULT_MODELS[self.value]

    @property
    def default_model(self) -> str:
        return self.default_models[0]

    @property
    def supports_vision(self) -> bool:
        return True


@dataclass(frozen=True)
class Message:
    """Один ход диалога. `image`: сырые байты скриншота (PNG), если есть."""

    role: Role
    content: str
    image: bytes | None = None


@dataclass(frozen=True)
class ProviderConfig:
    """Конфиг клиента. Меняется только целиком (`replace`), не по полям во время вызова."""

    kind: ProviderKind
    api_key: str
    model: str | None = None
    system_prompt: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ProviderKind(self.kind))
        if not self.model:
            object.__setattr__(self, "model", self.kind.default_model)
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be a positive integer, got {self.max_tokens!r}")
        if (
            isinstance(self.temperature, bool)
            or not isinstance(self.temperature, (int, float))
            or not math.isfinite(self.temperature)
        ):
            raise ValueError(f"temperature must be a finite number, got {self.temperature!r}")

    def replace(self, **changes) -> ProviderConfig:
        return replace(self, **changes)


@dataclass(frozen=True)
class LLMResponse:
    """Единый ответ провайдера."""

    content: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None


@dataclass
class StreamAccumulator:
    """Состояние разбора одного стрима: текст + последние увиденные метаданные."""

    model: str
    fragments: list[str] = field(default_factory=list)
    finish_reason: str | None = None
    tokens_used: int | None = None
    done: bool = False
    skipped: int = 0

    def push(self, text: str) -> str:
        self.fragments.append(text)
        return text

    @property
    def content(self) -> str:
        return "".join(self.fragments)

    def to_response(self, default_finish_reason: str | None = None) -> LLMResponse:
        return LLMResponse(
            content=self.content,
            model=self.model,
            tokens_used=self.tokens_used,
            finish_reason=self.finish_reason or default_finish_reason,
        )


class LLMClient(Protocol):
    """Интерфейс клиента провайдера (один на диалект, выбирается фабрикой)."""

    kind: ProviderKind
    config: ProviderConfig

    async def validate_key(self) -> bool:
        ...

    async def send(self, messages: Sequence[Message]) -> LLMResponse:
        ...

    async def send_streaming(self, messages: Sequence[Message], on_token: TokenCallback) -> LLMResponse:
        ...

    async def aclose(self) -> None:
        ...
