"""Настройки клиентов провайдеров (env + `.env`)."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic-настройки: адреса провайдеров, таймауты, ключи для CLI."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
    grok_base_url: str = Field(default="https://api.x.ai/v1", validation_alias="GROK_BASE_URL")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1",
        validation_alias="ANTHROPIC_BASE_URL",
    )
    anthropic_version: str = Field(default="2023-06-01", validation_alias="ANTHROPIC_VERSION")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="GEMINI_BASE_URL",
    )

    # Генерация бывает медленной: большой таймаут на операцию и общий бюджет на весь ответ.
    request_timeout_seconds: float = Field(default=120.0, validation_alias="REQUEST_TIMEOUT_SECONDS")
    total_timeout_seconds: float = Field(default=300.0, validation_alias="TOTAL_TIMEOUT_SECONDS")

    error_body_limit: int = Field(default=500, validation_alias="ERROR_BODY_LIMIT")
    image_mime_type: str = Field(default="image/png", validation_alias="IMAGE_MIME_TYPE")
    openai_image_detail: str = Field(default="high", validation_alias="OPENAI_IMAGE_DETAIL")
    placeholder_text: str = Field(default="Hello", validation_alias="PLACEHOLDER_TEXT")
    strict_stream_termination: bool = Field(default=False, validation_alias="STRICT_STREAM_TERMINATION")

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: str | None = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    xai_api_key: str | None = Field(default=None, validation_alias="XAI_API_KEY")


_settings: Settings | None = None


def get_settings() -> Settings:
    """Ленивая загрузка настроек (один раз на процесс)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
