"""Редактирование тел запросов перед логированием (без текстов промптов и картинок)."""

import hashlib
from typing import Any

REDACTED_TEXT = "<redacted>"

# Поля, где у трёх диалектов лежит пользовательский текст или base64 картинки.
_SENSITIVE_KEYS = {"content", "text", "system", "data", "url"}


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _redact_any(value: Any) -> Any:
    if isinstance(value, str):
        return {"redacted": True, "len": len(value), "sha256": sha256_hex(value)}
    if isinstance(value, list):
        return [_redact_any(v) for v in value]
    if isinstance(value, dict):
        return redact_request_body(value)
    return value


def redact_request_body(body: dict) -> dict:
    """Заменяет текст/картинки на длину и sha256, структуру и параметры оставляет."""
    out: dict[str, Any] = {}
    for k, v in body.items():
        if k in _SENSITIVE_KEYS:
            out[k] = _redact_any(v)
        elif isinstance(v, (list, dict)):
            out[k] = _redact_any(v)
        else:
            out[k] = v
    return out


def redact_url(url: str) -> str:
    """Прячет ключ из query (`?key=...` у Gemini)."""
    if "key=" not in url:
        return url
    base, _, query = url.partition("?")
    parts = []
    for item in query.split("&"):
        name = item.partition("=")[0]
        parts.append(f"{name}={REDACTED_TEXT}" if name == "key" else item)
    return f"{base}?{'&'.join(parts)}"
