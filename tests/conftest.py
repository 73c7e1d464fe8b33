import json

import httpx
import pytest

from ai_providers.settings import Settings


class FakeBackend:
    """Записывает запросы и отвечает заранее заданными ответами (по очереди, последний повторяется)."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._replies: list[tuple[int, bytes, dict[str, str]]] = []

    def reply(
        self,
        status: int = 200,
        *,
        json_body: object | None = None,
        text: str | None = None,
        lines: list[str] | None = None,
    ) -> None:
        if json_body is not None:
            content = json.dumps(json_body).encode("utf-8")
            headers = {"content-type": "application/json"}
        elif lines is not None:
            content = ("\n".join(lines) + "\n").encode("utf-8")
            headers = {"content-type": "text/event-stream"}
        else:
            content = (text or "").encode("utf-8")
            headers = {"content-type": "text/plain"}
        self._replies.append((status, content, headers))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, content, headers = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        return httpx.Response(status, content=content, headers=headers)

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def strict_settings() -> Settings:
    return Settings(_env_file=None, STRICT_STREAM_TERMINATION=True)
