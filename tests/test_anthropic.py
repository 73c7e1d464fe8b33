import base64

import pytest

from ai_providers.providers.anthropic import AnthropicClient, build_messages_body, decode_event
from ai_providers.providers.base import Message, ProviderConfig, ProviderKind, StreamAccumulator
from ai_providers.services.errors import InvalidResponseError, RateLimitedError, ServerError, StreamingError


def _config(**overrides) -> ProviderConfig:
    params = {"kind": ProviderKind.ANTHROPIC, "api_key": "sk-ant-test", "system_prompt": "You control a computer."}
    params.update(overrides)
    return ProviderConfig(**params)


def _client(backend, settings, config: ProviderConfig | None = None) -> AnthropicClient:
    return AnthropicClient(config or _config(), settings=settings, client=backend.http())


def test_build_messages_body_system_field_and_clamp(settings) -> None:
    messages = [
        Message(role="system", content="ignored here"),
        Message(role="user", content="hi"),
        Message(role="assistant", content="hello"),
    ]
    body = build_messages_body(_config(temperature=5.0), messages, stream=False, settings=settings)

    assert body["system"] == "You control a computer."
    assert body["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
    assert body["temperature"] == 1.0
    assert body["model"] == "claude-sonnet-4-5-20250929"
    assert body["stream"] is False


def test_build_messages_body_image_block_precedes_text(settings) -> None:
    msg = Message(role="user", content="Describe", image=b"image-bytes")
    body = build_messages_body(_config(temperature=-1.0), [msg], stream=True, settings=settings)

    assert body["temperature"] == 0.0
    content = body["messages"][0]["content"]
    assert content[0]["type"] == "image"
    assert content[0]["source"]["type"] == "base64"
    assert content[0]["source"]["media_type"] == "image/png"
    assert base64.b64decode(content[0]["source"]["data"]) == b"image-bytes"
    assert content[1] == {"type": "text", "text": "Describe"}
    assert body["stream"] is True


@pytest.mark.parametrize("messages", [[], [Message(role="system", content="only system")]])
def test_build_messages_body_placeholder(settings, messages) -> None:
    body = build_messages_body(_config(system_prompt=""), messages, stream=False, settings=settings)
    assert body["messages"] == [{"role": "user", "content": "Hello"}]
    assert "system" not in body


@pytest.mark.asyncio
async def test_send_parses_message(backend, settings) -> None:
    backend.reply(
        json_body={
            "model": "claude-sonnet-4-5-20250929",
            "content": [
                {"type": "text", "text": "Clicking "},
                {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
                {"type": "text", "text": "now."},
            ],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 10, "output_tokens": 4},
        }
    )
    result = await _client(backend, settings).send([Message(role="user", content="hi")])

    assert result.content == "Clicking now."
    assert result.tokens_used == 14
    assert result.finish_reason == "end_turn"

    request = backend.last_request
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert "authorization" not in request.headers


@pytest.mark.asyncio
async def test_send_partial_usage_has_no_token_count(backend, settings) -> None:
    backend.reply(json_body={"content": [{"type": "text", "text": "ok"}], "usage": {"output_tokens": 4}})
    result = await _client(backend, settings).send([Message(role="user", content="hi")])
    assert result.tokens_used is None
    assert result.model == "claude-sonnet-4-5-20250929"


@pytest.mark.asyncio
async def test_send_missing_content_is_invalid_response(backend, settings) -> None:
    backend.reply(json_body={"type": "error", "error": {"type": "overloaded_error"}})
    with pytest.raises(InvalidResponseError) as exc_info:
        await _client(backend, settings).send([Message(role="user", content="hi")])
    assert "overloaded_error" in exc_info.value.detail


@pytest.mark.asyncio
async def test_send_429_is_rate_limited(backend, settings) -> None:
    backend.reply(429, json_body={"type": "error"})
    with pytest.raises(RateLimitedError):
        await _client(backend, settings).send([Message(role="user", content="hi")])


@pytest.mark.asyncio
async def test_send_529_is_server_error(backend, settings) -> None:
    backend.reply(529, text="overloaded")
    with pytest.raises(ServerError) as exc_info:
        await _client(backend, settings).send([Message(role="user", content="hi")])
    assert exc_info.value.status_code == 529


STREAM = [
    "event: message_start",
    'data: {"type":"message_start","message":{"model":"claude-haiku-4-5-20251001","usage":{"input_tokens":9}}}',
    "",
    "event: content_block_start",
    'data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}',
    "",
    "event: ping",
    'data: {"type":"ping"}',
    "",
    "event: content_block_delta",
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hel"}}',
    "",
    "event: content_block_delta",
    "data: {broken",
    "",
    "event: content_block_delta",
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"lo"}}',
    "",
    "event: message_delta",
    'data: {"type":"message_delta","delta":{"stop_reason":"max_tokens"},"usage":{"output_tokens":12}}',
    "",
    "event: message_stop",
    'data: {"type":"content_block_delta","delta":{"text":"after stop"}}',
]


@pytest.mark.asyncio
async def test_streaming_dispatches_event_types(backend, settings) -> None:
    backend.reply(lines=STREAM)
    tokens: list[str] = []
    result = await _client(backend, settings).send_streaming([Message(role="user", content="hi")], tokens.append)

    assert tokens == ["Hel", "lo"]
    assert result.content == "Hello"
    assert result.model == "claude-haiku-4-5-20251001"
    assert result.finish_reason == "max_tokens"
    assert result.tokens_used == 12


@pytest.mark.asyncio
async def test_streaming_stop_event_ends_immediately(backend, settings) -> None:
    backend.reply(
        lines=[
            'data: {"type":"content_block_delta","delta":{"text":"A"}}',
            "event: message_stop",
            'data: {"type":"content_block_delta","delta":{"text":"B"}}',
            'data: {"type":"message_delta","delta":{"stop_reason":"late"}}',
        ]
    )
    tokens: list[str] = []
    result = await _client(backend, settings).send_streaming([Message(role="user", content="hi")], tokens.append)

    assert tokens == ["A"]
    assert result.content == "A"
    assert result.finish_reason == "end_turn"


@pytest.mark.asyncio
async def test_streaming_429_is_rate_limited(backend, settings) -> None:
    backend.reply(429, text="slow down")
    with pytest.raises(RateLimitedError):
        await _client(backend, settings).send_streaming([Message(role="user", content="hi")], lambda _t: None)


@pytest.mark.asyncio
async def test_streaming_without_stop_event_in_strict_mode(backend, strict_settings) -> None:
    backend.reply(lines=['data: {"type":"content_block_delta","delta":{"text":"A"}}'])
    with pytest.raises(StreamingError):
        await _client(backend, strict_settings).send_streaming([Message(role="user", content="hi")], lambda _t: None)


def test_decode_event_ignores_unknown_types() -> None:
    acc = StreamAccumulator(model="m")
    assert decode_event('data: {"type":"error","error":{"type":"overloaded_error"}}', acc) == []
    assert decode_event("event: error", acc) == []
    assert acc.done is False
    assert acc.content == ""


def test_decode_event_bad_usage_keeps_stop_reason() -> None:
    acc = StreamAccumulator(model="m")
    line = 'data: {"type":"message_delta","delta":{"stop_reason":"max_tokens"},"usage":{"output_tokens":"many"}}'
    assert decode_event(line, acc) == []
    assert acc.finish_reason == "max_tokens"
    assert acc.tokens_used is None
    assert acc.skipped == 0


@pytest.mark.asyncio
async def test_validate_key_posts_minimal_request(backend, settings) -> None:
    backend.reply(200, json_body={"content": [{"type": "text", "text": "hi"}]})
    assert await _client(backend, settings).validate_key() is True

    body = backend.last_json
    assert body["max_tokens"] == 10
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert backend.last_request.headers["x-api-key"] == "sk-ant-test"


@pytest.mark.asyncio
async def test_validate_key_blank_key_skips_network(backend, settings) -> None:
    backend.reply(200, json_body={})
    assert await _client(backend, settings, _config(api_key="")).validate_key() is False
    assert backend.requests == []
