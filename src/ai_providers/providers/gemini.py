"""Gemini провайдер (`generateContent` / `streamGenerateContent?alt=sse`, ключ в query)."""

from __future__ import annotations

from typing import Any, Callable, Sequence
from urllib.parse import urlencode

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
    body_excerpt,
    build_http_client,
    clamp_temperature,
    data_payload,
    drop_invalid,
    encode_image,
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
from ai_providers.services.errors import InvalidResponseError
from ai_providers.settings import Settings, get_settings

MAX_TEMPERATURE = 2.0
JSON_HEADERS = {"Content-Type": "application/json"}


class Part(BaseModel):
    text: str | None = None


class Content(BaseModel):
    parts: list[Part] | None = None


class Candidate(BaseModel):
    content: Content | None = None
    finish_reason: str | None = Field(default=None, validation_alias="finishReason")

    @field_validator("content", "finish_reason", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)


class UsageMetadata(BaseModel):
    total_token_count: int | None = Field(default=None, validation_alias="totalTokenCount")


class GenerateContentResponse(BaseModel):
    candidates: list[Candidate] | None = None
    usage_metadata: UsageMetadata | None = Field(default=None, validation_alias="usageMetadata")

    @field_validator("usage_metadata", mode="wrap")
    @classmethod
    def _lenient(cls, value: Any, handler: Callable[[Any], Any]) -> Any:
        return drop_invalid(value, handler)

    @property
    def total_tokens(self) -> int | None:
        return self.usage_metadata.total_token_count if self.usage_metadata else None


def build_generate_body(config: ProviderConfig, messages: Sequence[Message], *, settings: Settings) -> dict:
    """Тело `generateContent`: system только через systemInstruction, картинка перед текстом."""
    contents: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            continue
        parts: list[dict] = []
        if msg.image is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": settings.image_mime_type,
                        "data": encode_image(msg.image),
                    }
                }
            )
        parts.append({"text": msg.content})
        contents.append({"role": "model" if msg.role == "assistant" else "user", "parts": parts})

    if not contents:
        contents.append({"role": "user", "parts": [{"text": settings.placeholder_text}]})

    body: dict = {
        "contents": contents,
        "generationConfig": {
            "maxOutputTokens": config.max_tokens,
            "temperature": clamp_temperature(config.temperature, MAX_TEMPERATURE),
        },
    }
    if config.system_prompt:
        body["systemInstruction"] = {"parts": [{"text": config.system_prompt}]}
    return body


def parse_generate_response(body: str, model: str) -> LLMResponse:
    missing = "candidates/content/parts"
    data: GenerateContentResponse = parse_json_body(body, GenerateContentResponse, missing)
    if not data.candidates or data.candidates[0].content is None or data.candidates[0].content.parts is None:
        raise InvalidResponseError(f"Missing {missing}: {body_excerpt(body)}", body=body)

    candidate = data.candidates[0]
    return LLMResponse(
        content="".join(part.text for part in candidate.content.parts if part.text is not None),
        model=model,
        tokens_used=data.total_tokens,
        finish_reason=candidate.finish_reason,
    )


def decode_candidate(line: str, acc: StreamAccumulator) -> list[str]:
    """Каждый кадр является ответом с одним кандидатом; части текста отдаются в порядке массива."""
    payload = data_payload(line)
    if payload is None:
        return []
    frame = parse_frame(payload, GenerateContentResponse)
    if frame is None or not frame.candidates:
        return skip_frame(acc, line)

    candidate = frame.candidates[0]
    if candidate.finish_reason:
        acc.finish_reason = candidate.finish_reason
    if frame.total_tokens is not None:
        acc.tokens_used = frame.total_tokens

    if candidate.content is None or not candidate.content.parts:
        return []
    return [acc.push(part.text) for part in candidate.content.parts if part.text is not None]


class GeminiClient:
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
        self._base_url = (base_url or self.settings.gemini_base_url).rstrip("/")
        self._owns_client = client is None
        self._http = client or build_http_client(self.settings)

    @property
    def kind(self) -> ProviderKind:
        return self.config.kind

    def _url(self, config: ProviderConfig, *, stream: bool) -> str:
        action = "streamGenerateContent" if stream else "generateContent"
        params = {"key": config.api_key}
        if stream:
            params["alt"] = "sse"
        return f"{self._base_url}/models/{config.model}:{action}?{urlencode(params)}"

    async def validate_key(self) -> bool:
        config = self.config
        if not config.api_key.strip():
            return False
        with track_call(self.kind.value, "validate_key"):
            return await probe(
                self._http,
                "GET",
                f"{self._base_url}/models?{urlencode({'key': config.api_key})}",
                settings=self.settings,
            )

    async def send(self, messages: Sequence[Message]) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send"):
            require_api_key(config)
            body = build_generate_body(config, messages, settings=self.settings)
            status_code, text = await send_request(
                self._http,
                "POST",
                self._url(config, stream=False),
                settings=self.settings,
                headers=JSON_HEADERS,
                json_body=body,
            )
            raise_for_status(status_code, text, self.settings)
            return record_response(self.kind.value, "send", parse_generate_response(text, config.model))

    async def send_streaming(self, messages: Sequence[Message], on_token: TokenCallback) -> LLMResponse:
        config = self.config
        with track_call(self.kind.value, "send_streaming"):
            require_api_key(config)
            body = build_generate_body(config, messages, settings=self.settings)
            acc = await stream_request(
                self._http,
                self._url(config, stream=True),
                settings=self.settings,
                headers=JSON_HEADERS,
                json_body=body,
                acc=StreamAccumulator(model=config.model),
                decode_frame=decode_candidate,
                on_token=on_token,
                provider=self.kind.value,
            )
            # Терминального маркера у Gemini нет: конец стрима = конец тела.
            return record_response(self.kind.value, "send_streaming", acc.to_response())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
