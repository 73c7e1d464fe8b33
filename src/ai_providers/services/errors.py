"""Ошибки клиентов провайдеров (закрытая таксономия, стабильные code/message)."""

from __future__ import annotations

import httpx

_BODY_LIMIT = 500


def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "…"


class ClientError(Exception):
    """Базовая ошибка клиента провайдера. Внутри библиотеки не ретраится."""

    code = "client_error"
    type = "client_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidAPIKeyError(ClientError):
    code = "invalid_api_key"
    type = "invalid_request_error"

    def __init__(self) -> None:
        super().__init__("Invalid or missing API key")


class NetworkError(ClientError):
    code = "network_error"
    type = "upstream_error"

    def __init__(self, cause: BaseException | str) -> None:
        detail = cause if isinstance(cause, str) else (str(cause) or type(cause).__name__)
        super().__init__(f"Network error: {detail}")
        self.cause = cause


class InvalidResponseError(ClientError):
    """Ответ не разобран; `detail` содержит кусок сырого тела, в `body` тело целиком."""

    code = "invalid_response"
    type = "upstream_error"

    def __init__(self, detail: str, *, body: str | None = None) -> None:
        super().__init__(f"Invalid response: {detail}")
        self.detail = detail
        self.body = body


class RateLimitedError(ClientError):
    code = "rate_limited"
    type = "rate_limit_error"

    def __init__(self) -> None:
        super().__init__("Rate limited - please wait and retry")


class ServerError(ClientError):
    """Upstream вернул >= 400 (кроме 429). Полное тело лежит в `body`, в сообщении обрезанное."""

    code = "server_error"
    type = "upstream_error"

    def __init__(self, status_code: int, body: str, *, body_limit: int = _BODY_LIMIT) -> None:
        super().__init__(f"Server error {status_code}: {_truncate(body, body_limit)}")
        self.status_code = status_code
        self.body = body


class ImageEncodingError(ClientError):
    code = "image_encoding_failed"
    type = "invalid_request_error"

    def __init__(self) -> None:
        super().__init__("Failed to encode image data")


class StreamingError(ClientError):
    code = "streaming_error"
    type = "upstream_error"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Streaming error: {detail}")
        self.detail = detail


def map_transport_exception(exc: Exception) -> ClientError:
    """Ошибка до получения статуса ответа -> NetworkError (уже-ClientError возвращаем как есть)."""
    if isinstance(exc, ClientError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError(f"upstream timed out ({type(exc).__name__})")
    if isinstance(exc, TimeoutError):
        return NetworkError("total transfer timeout exceeded")
    if isinstance(exc, httpx.InvalidURL):
        return InvalidResponseError(f"Invalid URL: {exc}")
    return NetworkError(exc)


def stream_transport_exception(exc: Exception) -> ClientError:
    """Ошибка во время чтения тела стрима -> StreamingError."""
    if isinstance(exc, ClientError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return StreamingError("stream timed out")
    return StreamingError(str(exc) or type(exc).__name__)


def error_payload(err: ClientError) -> dict:
    """Формирует JSON `{error:{...}}` для машиночитаемого вывода."""
    return {"error": {"code": err.code, "message": err.message, "type": err.type}}
