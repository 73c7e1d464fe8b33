"""Общие HTTP-утилиты диалектов: клиент, классификация статусов, картинки, построчный разбор стрима."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from contextlib import contextmanager
from typing import Any, AsyncIterator, Callable, Iterator

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ai_providers.metrics import (
    request_latency_seconds,
    requests_total,
    stream_frames_skipped_total,
    tokens_total,
)
from ai_providers.providers.base import LLMResponse, ProviderConfig, StreamAccumulator, TokenCallback
from ai_providers.services.errors import (
    ClientError,
    ImageEncodingError,
    InvalidAPIKeyError,
    InvalidResponseError,
    RateLimitedError,
    ServerError,
    StreamingError,
    map_transport_exception,
    stream_transport_exception,
)
from ai_providers.services.redaction import redact_request_body, redact_url
from ai_providers.settings import Settings

log = structlog.get_logger()

DATA_PREFIX = "data: "
EVENT_PREFIX = "event: "

# Разбирает одну строку стрима в аккумулятор, возвращает фрагменты текста для on_token.
FrameDecoder = Callable[[str, StreamAccumulator], list[str]]

_TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, TimeoutError)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_seconds))


def clamp_temperature(value: float, upper: float) -> float:
    """Зажимает температуру в [0, upper] (у каждого диалекта свой верх)."""
    return min(max(float(value), 0.0), upper)


def encode_image(image: Any) -> str:
    """Сырые байты -> base64 (ASCII)."""
    if not isinstance(image, (bytes, bytearray, memoryview)):
        raise ImageEncodingError()
    try:
        return base64.b64encode(image).decode("ascii")
    except (TypeError, ValueError) as exc:
        raise ImageEncodingError() from exc


def require_api_key(config: ProviderConfig) -> None:
    if not config.api_key or not config.api_key.strip():
        raise InvalidAPIKeyError()


def body_excerpt(body: str, limit: int = 500) -> str:
    return body if len(body) <= limit else body[:limit] + "…"


def raise_for_status(status_code: int, body: str, settings: Settings) -> None:
    """429 -> RateLimitedError, прочие >= 400 -> ServerError(status, body)."""
    if status_code == 429:
        raise RateLimitedError()
    if status_code >= 400:
        log.warning("llm_http_error", status_code=status_code, body=body_excerpt(body, settings.error_body_limit))
        raise ServerError(status_code, body, body_limit=settings.error_body_limit)


def parse_json_body(body: str, model: type[BaseModel], missing: str) -> Any:
    """Разбирает тело ответа в модель диалекта; любая нехватка полей -> InvalidResponseError с телом."""
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise InvalidResponseError(f"Failed to parse JSON: {body_excerpt(body)}", body=body) from exc
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidResponseError(f"Missing {missing}: {body_excerpt(body)}", body=body) from exc


def parse_frame(payload: str, model: type[BaseModel]) -> Any | None:
    """Один кадр стрима -> модель или None (битый/неполный кадр пропускаем)."""
    try:
        return model.model_validate_json(payload)
    except ValidationError:
        return None


def drop_invalid(value: Any, handler: Callable[[Any], Any]) -> Any:
    """Для wrap-валидаторов кадров: поле неожиданного типа становится None, остальной кадр сохраняется."""
    try:
        return handler(value)
    except ValidationError:
        return None


def data_payload(line: str) -> str | None:
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):]


def skip_frame(acc: StreamAccumulator, line: str) -> list[str]:
    acc.skipped += 1
    log.debug("llm_stream_frame_skipped", frame=body_excerpt(line, 200))
    return []


@contextmanager
def track_call(provider: str, operation: str) -> Iterator[None]:
    """Метрики + лог на один вызов провайдера."""
    t0 = time.monotonic()
    status = "failed"
    try:
        yield
        status = "ok"
    except ClientError as exc:
        status = exc.code
        log.warning("llm_call_failed", provider=provider, operation=operation, code=exc.code, err=exc.message)
        raise
    finally:
        requests_total.labels(provider=provider, operation=operation, status=status).inc()
        request_latency_seconds.labels(provider=provider, operation=operation).observe(time.monotonic() - t0)


def record_response(provider: str, operation: str, response: LLMResponse) -> LLMResponse:
    if response.tokens_used:
        tokens_total.labels(provider=provider, model=response.model).inc(response.tokens_used)
    log.info(
        "llm_response",
        provider=provider,
        operation=operation,
        model=response.model,
        tokens_used=response.tokens_used,
        finish_reason=response.finish_reason,
        content_len=len(response.content),
    )
    return response


async def send_request(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    settings: Settings,
    headers: dict[str, str] | None = None,
    json_body: dict | None = None,
) -> tuple[int, str]:
    """Обычный (не потоковый) запрос: возвращает статус и тело целиком."""
    log.debug(
        "llm_request",
        method=method,
        url=redact_url(url),
        body=redact_request_body(json_body) if json_body is not None else None,
    )
    try:
        async with asyncio.timeout(settings.total_timeout_seconds):
            r = await http.request(method, url, headers=headers, json=json_body)
            return r.status_code, r.text
    except _TRANSPORT_ERRORS as exc:
        raise map_transport_exception(exc) from exc


async def fold_lines(
    lines: AsyncIterator[str],
    acc: StreamAccumulator,
    decode_frame: FrameDecoder,
    on_token: TokenCallback,
) -> StreamAccumulator:
    """Строки приходят по одной; каждый фрагмент текста отдаём в on_token сразу, в порядке прихода."""
    async for line in lines:
        for fragment in decode_frame(line, acc):
            on_token(fragment)
        if acc.done:
            break
    return acc


async def stream_request(
    http: httpx.AsyncClient,
    url: str,
    *,
    settings: Settings,
    headers: dict[str, str] | None,
    json_body: dict,
    acc: StreamAccumulator,
    decode_frame: FrameDecoder,
    on_token: TokenCallback,
    provider: str,
) -> StreamAccumulator:
    """Потоковый POST: статус проверяется один раз до разбора строк, дальше только кадры."""
    log.debug("llm_request", method="POST", url=redact_url(url), body=redact_request_body(json_body))
    started = False
    try:
        async with asyncio.timeout(settings.total_timeout_seconds):
            async with http.stream("POST", url, headers=headers, json=json_body) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise_for_status(response.status_code, body, settings)
                started = True
                await fold_lines(response.aiter_lines(), acc, decode_frame, on_token)
    except _TRANSPORT_ERRORS as exc:
        if started:
            raise stream_transport_exception(exc) from exc
        raise map_transport_exception(exc) from exc
    finally:
        if acc.skipped:
            stream_frames_skipped_total.labels(provider=provider).inc(acc.skipped)
    return acc


def finish_truncated(acc: StreamAccumulator, *, settings: Settings, provider: str) -> None:
    """Стрим закрылся без терминального маркера: по умолчанию отдаём частичный результат."""
    if acc.done:
        return
    if settings.strict_stream_termination:
        raise StreamingError("stream closed before the terminal marker")
    log.warning("llm_stream_truncated", provider=provider, content_len=len(acc.content))


async def probe(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    settings: Settings,
    headers: dict[str, str] | None = None,
    json_body: dict | None = None,
) -> bool:
    """Проверка ключа: 5xx -> ServerError, True только для 200."""
    status_code, _body = await send_request(
        http, method, url, settings=settings, headers=headers, json_body=json_body
    )
    if status_code >= 500:
        raise ServerError(status_code, "Server error during validation")
    return status_code == 200
