"""OpenAI-compatible провайдер (`/chat/completions`; им же ходим в Grok/xAI)."""

from __future__ import annotations

from typing import Any, Callable, Sequence

import httpx
from pydantic import BaseModel, Field, field_validator

from ai_providers.providers.base import (
    LLMResponse,
    Message,
    ProviderConfig,
    ProviderKind,
    StreamAccumulator,
    TokenCallback,
)
from ai_providers.providers.transport import (
    build_http_client,
    clamp_temperature,
    data_payload,
    drop_invalid,
    encode_image,
    finish_truncated,
    parse_frame,
    parse_json_body,
    probe,
    record_response,
    raise_for_status,
    require_api_key,
    send_request,
    skip_frame,
    stream_request,
    track_call,
)
from ai_providers.settings import Settings, get_settings

MAX_TEMPERATURE = 2.0
DONE_MARKER = "[DONE]"


class Usage(BaseModel):
    total_tokens: int | None = None


class CompletionMessage(BaseModel):
    content: str


class CompletionChoice(BaseModel):
    message: CompletionMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    model: str | None = None
    choices: list[CompletionChoice] = Field(min_length=1)
    usage: Usage | None = None


class ChunkDelta(BaseModel):
    content: str | None = None

    @field_validator("content", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


class ChunkChoice(BaseModel):
    delta: ChunkDelta | None = None
    finish_reason: str | None = None

    @field_validator("delta", "finish_reason", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


class ChatChunk(BaseModel):
    """Кадр стрима. Поля читаются независимо: метаданные неожиданного типа не теряют дельту."""

    model: str | None = None
    choices: list[ChunkChoice] | None = None
    usage: Usage | None = None

    @field_validator("model", "choices", "usage", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


def base_url_for(kind: ProviderKind, settings: Settings) -> str:
    if kind is ProviderKind.GROK:
        return settings.grok_base_url
    return settings.openai_base_url


def build_chat_body(
    config: ProviderConfig,
    messages: Sequence[Message],
    *,
    stream: bool,
    settings: Settings,
) -> dict:
    """Тело `/chat/completions`: системный промпт первым элементом, картинка передаётся как data URL."""
    api_messages: list[dict] = []
    if config.system_prompt:
        api_messages.append({"role": "system", "content": config.system_prompt})

    for msg in messages:
        if msg.image is not None:
            b64 = encode_image(msg.image)
            api_messages.append(
                {
                    "role": msg.role,
                    "content": [
                        {"type": "text", "text": msg.content},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{settings.image_mime_type};base64,{b64}",
                                "detail": settings.openai_image_detail,
                            },
                        },
                    ],
                }
            )
        else:
            api_messages.append({"role": msg.role, "content": msg.content})

    if not any(m["role"] != "system" for m in api_messages):
        api_messages.append({"role": "user", "content": settings.placeholder_text})

    body: dict = {
        "model": config.model,
        "messages": api_messages,
        "max_tokens": config.max_tokens,
        "temperature": clamp_temperature(config.temperature, MAX_TEMPERATURE),
        "stream": stream,
    }
    if stream:
        body["stream_options"] = {"include_usage": True}
    return body


def parse_chat_completion(body: str, fallback_model: str) -> LLMResponse:
    data: ChatCompletion = parse_json_body(body, ChatCompletion, "choices/message/content")
    choice = data.choices[0]
    return LLMResponse(
        content=choice.message.content,
        model=data.model or fallback_model,
        tokens_used=data.usage.total_tokens if data.usage else None,
        finish_reason=choice.finish_reason,
    )


def decode_chunk(line: str, acc: StreamAccumulator) -> list[str]:
    """Один `data: ` кадр; `[DONE]` завершает стрим, битые кадры пропускаем."""
    payload = data_payload(line)
    if payload is None:
        return []
    if payload.strip() == DONE_MARKER:
        acc.done = True
        return []

    chunk = parse_frame(payload, ChatChunk)
    if chunk is None:
        return skip_frame(acc, line)

    if chunk.model:
        acc.model = chunk.model
    # include_usage: итоговый usage приходит отдельным кадром с пустым choices.
    if chunk.usage is not None and chunk.usage.total_tokens is not None:
        acc.tokens_used = chunk.usage.total_tokens
    if not chunk.choices:
        return []

    choice = chunk.choices[0]
    out: list[str] = []
    if choice.delta is not None and choice.delta.content:
        out.append(acc.push(choice.delta.content))
    if choice.finish_reason:
        acc.finish_reason = choice.finish_reason
    return out


class OpenAICompatibleClient:
    """Клиент диалекта OpenAI; OpenAI и Grok отличаются только базовым адресом."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        base_url: str | None = None,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config = config
        self._base_url = (base_url or base_url_for(config.kind, self.settings)).rstrip("/")
        self._owns_client = client is None
        self._http = client or build_http_client(self.settings)

    @property
    def kind(self) -> ProviderKind:
        return self.config.kind

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    async def validate_key(self) -> bool:
        config = self.config
        if not config.api_key.strip():
            return False
        with track_call(self.kind.value, "validate_key"):
            return await probe(
                self._http,
                "GET",
                f"{self._base_url}/models",
                settings=self.settings,
                headers={"Authorization": f"Bearer {config.api_key}"},
            )

    async def send(self, messages: Sequence[Message]) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send"):
            require_api_key(config)
            body = build_chat_body(config, messages, stream=False, settings=self.settings)
            status_code, text = await send_request(
                self._http,
                "POST",
                f"{self._base_url}/chat/completions",
                settings=self.settings,
                headers=self._headers(config),
                json_body=body,
            )
            raise_for_status(status_code, text, self.settings)
            return record_response(self.kind.value, "send", parse_chat_completion(text, config.model))

    async def send_streaming(self, messages: Sequence[Message], on_token: TokenCallback) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send_streaming"):
            require_api_key(config)
            body = build_chat_body(config, messages, stream=True, settings=self.settings)
            acc = await stream_request(
                self._http,
                f"{self._base_url}/chat/completions",
                settings=self.settings,
                headers=self._headers(config),
                json_body=body,
                acc=StreamAccumulator(model=config.model),
                decode_frame=decode_chunk,
                on_token=on_token,
                provider=self.kind.value,
            )
            finish_truncated(acc, settings=self.settings, provider=self.kind.value)
            return record_response(self.kind.value, "send_streaming", acc.to_response())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> OpenAICompatibleClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
