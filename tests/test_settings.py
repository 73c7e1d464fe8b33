from ai_providers.settings import Settings


def test_settings_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.request_timeout_seconds == 120.0
    assert settings.total_timeout_seconds == 300.0
    assert settings.anthropic_version == "2023-06-01"
    assert settings.strict_stream_termination is False


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:1234/v1")
    monkeypatch.setenv("TOTAL_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("STRICT_STREAM_TERMINATION", "true")
    settings = Settings(_env_file=None)
    assert settings.openai_base_url == "http://localhost:1234/v1"
    assert settings.total_timeout_seconds == 30.0
    assert settings.strict_stream_termination is True
