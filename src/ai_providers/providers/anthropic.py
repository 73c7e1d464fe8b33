"""Anthropic провайдер (`/messages`, SSE с `event:`-строками)."""

from __future__ import annotations

from typing import Any, Callable, Sequence

import httpx
from pydantic import BaseModel, field_validator

from ai_providers.providers.base import (
    LLMResponse,
    Message,
    ProviderConfig,
    ProviderKind,
    StreamAccumulator,
    TokenCallback,
)
from ai_providers.providers.transport import (
    EVENT_PREFIX,
    build_http_client,
    clamp_temperature,
    data_payload,
    drop_invalid,
    encode_image,
    finish_truncated,
    parse_frame,
    parse_json_body,
    probe,
    raise_for_status,
    record_response,
    require_api_key,
    send_request,
    skip_frame,
    stream_request,
    track_call,
)
from ai_providers.settings import Settings, get_settings

MAX_TEMPERATURE = 1.0
STOP_EVENT = "message_stop"
DEFAULT_STOP_REASON = "end_turn"


class ContentBlock(BaseModel):
    type: str | None = None
    text: str | None = None


class MessageUsage(BaseModel):
    input_tokens: int | None = None
    output_tokens: int | None = None


class MessagesResponse(BaseModel):
    model: str | None = None
    content: list[ContentBlock]
    stop_reason: str | None = None
    usage: MessageUsage | None = None


class StartedMessage(BaseModel):
    model: str | None = None

    @field_validator("model", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


class EventDelta(BaseModel):
    text: str | None = None
    stop_reason: str | None = None

    @field_validator("text", "stop_reason", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


class StreamEvent(BaseModel):
    type: str | None = None
    message: StartedMessage | None = None
    delta: EventDelta | None = None
    usage: MessageUsage | None = None

    @field_validator("type", "message", "delta", "usage", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


def build_messages_body(
    config: ProviderConfig,
    messages: Sequence[Message],
    *,
    stream: bool,
    settings: Settings,
) -> dict:
    """Тело `/messages`: system отдельным полем, system-ходы из списка выкидываются."""
    api_messages: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            continue
        if msg.image is not None:
            api_messages.append(
                {
                    "role": msg.role,
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": settings.image_mime_type,
                                "data": encode_image(msg.image),
                            },
                        },
                        {"type": "text", "text": msg.content},
                    ],
                }
            )
        else:
            api_messages.append({"role": msg.role, "content": msg.content})

    if not api_messages:
        api_messages.append({"role": "user", "content": settings.placeholder_text})

    body: dict = {
        "model": config.model,
        "messages": api_messages,
        "max_tokens": config.max_tokens,
        "temperature": clamp_temperature(config.temperature, MAX_TEMPERATURE),
        "stream": stream,
    }
    if config.system_prompt:
        body["system"] = config.system_prompt
    return body


def parse_messages_response(body: str, fallback_model: str) -> LLMResponse:
    data: MessagesResponse = parse_json_body(body, MessagesResponse, "content")
    text = "".join(block.text for block in data.content if block.type == "text" and block.text is not None)

    tokens_used = None
    usage = data.usage
    if usage is not None and usage.input_tokens is not None and usage.output_tokens is not None:
        tokens_used = usage.input_tokens + usage.output_tokens

    return LLMResponse(
        content=text,
        model=data.model or fallback_model,
        tokens_used=tokens_used,
        finish_reason=data.stop_reason,
    )


def decode_event(line: str, acc: StreamAccumulator) -> list[str]:
    """`event: message_stop` обрывает стрим сразу; `data:` кадры разбираются по полю `type`."""
    if line.startswith(EVENT_PREFIX):
        if line[len(EVENT_PREFIX):].strip() == STOP_EVENT:
            acc.done = True
        return []

    payload = data_payload(line)
    if payload is None:
        return []
    event = parse_frame(payload, StreamEvent)
    if event is None:
        return skip_frame(acc, line)

    if event.type == "message_start":
        if event.message is not None and event.message.model:
            acc.model = event.message.model
    elif event.type == "content_block_delta":
        if event.delta is not None and event.delta.text:
            return [acc.push(event.delta.text)]
    elif event.type == "message_delta":
        if event.delta is not None and event.delta.stop_reason:
            acc.finish_reason = event.delta.stop_reason
        if event.usage is not None and event.usage.output_tokens is not None:
            acc.tokens_used = event.usage.output_tokens
    return []


class AnthropicClient:
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
        self._base_url = (base_url or self.settings.anthropic_base_url).rstrip("/")
        self._owns_client = client is None
        self._http = client or build_http_client(self.settings)

    @property
    def kind(self) -> ProviderKind:
        return self.config.kind

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "x-api-key": config.api_key,
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }

    async def validate_key(self) -> bool:
        config = self.config
        if not config.api_key.strip():
            return False
        with track_call(self.kind.value, "validate_key"):
            return await probe(
                self._http,
                "POST",
                f"{self._base_url}/messages",
                settings=self.settings,
                headers=self._headers(config),
                json_body={
                    "model": config.model,
                    "max_tokens": 10,
                    "messages": [{"role": "user", "content": "hi"}],
                },
            )

    async def send(self, messages: Sequence[Message]) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send"):
            require_api_key(config)
            body = build_messages_body(config, messages, stream=False, settings=self.settings)
            status_code, text = await send_request(
                self._http,
                "POST",
                f"{self._base_url}/messages",
                settings=self.settings,
                headers=self._headers(config),
                json_body=body,
            )
            raise_for_status(status_code, text, self.settings)
            return record_response(self.kind.value, "send", parse_messages_response(text, config.model))

    async def send_streaming(self, messages: Sequence[Message], on_token: TokenCallback) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send_streaming"):
            require_api_key(config)
            body = build_messages_body(config, messages, stream=True, settings=self.settings)
            acc = await stream_request(
                self._http,
                f"{self._base_url}/messages",
                settings=self.settings,
                headers=self._headers(config),
                json_body=body,
                acc=StreamAccumulator(model=config.model),
                decode_frame=decode_event,
                on_token=on_token,
                provider=self.kind.value,
            )
            finish_truncated(acc, settings=self.settings, provider=self.kind.value)
            return record_response(
                self.kind.value,
                "send_streaming",
                acc.to_response(default_finish_reason=DEFAULT_STOP_REASON),
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> AnthropicClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
