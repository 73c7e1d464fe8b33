import json

from ai_providers import cli
from ai_providers.providers.factory import create_client
from ai_providers.settings import Settings


def _patch(monkeypatch, backend, settings) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(
        cli,
        "create_client",
        lambda config, settings=None: create_client(config, settings=settings, client=backend.http()),
    )


def test_models_command(capsys) -> None:
    assert cli.main(["models", "gemini"]) == 0
    assert capsys.readouterr().out.splitlines() == ["gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash"]


def test_check_command_pass(monkeypatch, capsys, backend, settings) -> None:
    backend.reply(json_body={"model": "gpt-4o-mini", "choices": [{"message": {"content": "Hello"}}]})
    _patch(monkeypatch, backend, settings)

    assert cli.main(["check", "openai", "--api-key", "sk-test", "--model", "gpt-4o-mini"]) == 0

    out = capsys.readouterr().out
    assert "Response: Hello" in out
    assert out.rstrip().endswith("PASS")
    body = backend.last_json
    assert body["max_tokens"] == 50
    assert body["temperature"] == 0
    assert body["messages"] == [{"role": "user", "content": cli.CHECK_PROMPT}]


def test_check_command_streaming(monkeypatch, capsys, backend, settings) -> None:
    backend.reply(
        lines=[
            "event: content_block_delta",
            'data: {"type":"content_block_delta","delta":{"text":"Hel"}}',
            'data: {"type":"content_block_delta","delta":{"text":"lo"}}',
            "event: message_stop",
        ]
    )
    _patch(monkeypatch, backend, settings)

    assert cli.main(["check", "anthropic", "--api-key", "sk-ant", "--stream"]) == 0
    out = capsys.readouterr().out
    assert "Hello\n" in out
    assert "PASS" in out


def test_check_command_missing_key(monkeypatch, capsys, backend) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    settings = Settings(_env_file=None)
    backend.reply(json_body={})
    _patch(monkeypatch, backend, settings)

    assert cli.main(["check", "gemini"]) == 1
    lines = capsys.readouterr().out.splitlines()
    assert json.loads(lines[-2])["error"]["code"] == "invalid_api_key"
    assert lines[-1] == "FAIL"
    assert backend.requests == []


def test_validate_command_uses_env_key(monkeypatch, capsys, backend) -> None:
    monkeypatch.setenv("XAI_API_KEY", "xai-from-env")
    settings = Settings(_env_file=None)
    backend.reply(200, json_body={"data": []})
    _patch(monkeypatch, backend, settings)

    assert cli.main(["validate", "grok"]) == 0
    assert "Key is valid" in capsys.readouterr().out
    assert backend.last_request.headers["Authorization"] == "Bearer xai-from-env"
