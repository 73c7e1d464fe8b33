"""CLI утилита (проверка связи с провайдерами и ключей)."""

import argparse
import asyncio
import json
import sys

from ai_providers.infrastructure.logging import configure_logging
from ai_providers.providers.base import Message, ProviderConfig, ProviderKind
from ai_providers.providers.factory import create_client
from ai_providers.services.errors import ClientError, error_payload
from ai_providers.settings import Settings, get_settings

CHECK_PROMPT = "Say 'hello' in exactly one word."


def _env_api_key(kind: ProviderKind, settings: Settings) -> str | None:
    return {
        ProviderKind.OPENAI: settings.openai_api_key,
        ProviderKind.ANTHROPIC: settings.anthropic_api_key,
        ProviderKind.GEMINI: settings.gemini_api_key,
        ProviderKind.GROK: settings.xai_api_key,
    }[kind]


def _config_from_args(args: argparse.Namespace, settings: Settings) -> ProviderConfig:
    kind = ProviderKind(args.provider)
    return ProviderConfig(
        kind=kind,
        api_key=args.api_key or _env_api_key(kind, settings) or "",
        model=getattr(args, "model", None),
        max_tokens=50,
        temperature=0,
    )


async def _check(config: ProviderConfig, settings: Settings, prompt: str, stream: bool) -> None:
    client = create_client(config, settings=settings)
    try:
        messages = [Message(role="user", content=prompt)]
        if stream:
            def on_token(token: str) -> None:
                sys.stdout.write(token)
                sys.stdout.flush()

            result = await client.send_streaming(messages, on_token)
            print()
        else:
            result = await client.send(messages)
        print(f"Model: {result.model}")
        print(f"Response: {result.content}")
        if result.tokens_used is not None:
            print(f"Tokens: {result.tokens_used}")
    finally:
        await client.aclose()


async def _validate(config: ProviderConfig, settings: Settings) -> bool:
    client = create_client(config, settings=settings)
    try:
        return await client.validate_key()
    finally:
        await client.aclose()


def cmd_check(args: argparse.Namespace) -> int:
    """Отправляет короткий промпт и печатает PASS/FAIL."""
    settings = get_settings()
    try:
        config = _config_from_args(args, settings)
        print(f"--- Testing {config.kind.display_name} ---")
        print(f"Model: {config.model}")
        asyncio.run(_check(config, settings, args.prompt, args.stream))
    except ClientError as e:
        print(json.dumps(error_payload(e), ensure_ascii=False))
        print("FAIL")
        return 1
    print("PASS")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Проверяет ключ провайдера (без генерации)."""
    settings = get_settings()
    try:
        ok = asyncio.run(_validate(_config_from_args(args, settings), settings))
    except ClientError as e:
        print(json.dumps(error_payload(e), ensure_ascii=False))
        return 1
    print("Key is valid" if ok else "Key is invalid")
    return 0 if ok else 1


def cmd_models(args: argparse.Namespace) -> int:
    """Печатает дефолтные модели провайдера (первая используется по умолчанию)."""
    for model in ProviderKind(args.provider).default_models:
        print(model)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Точка входа CLI."""
    parser = argparse.ArgumentParser(prog="ai-providers", description="AI providers: CLI")
    parser.add_argument("--log-level", default=None, help="Уровень логов (по умолчанию LOG_LEVEL)")
    sub = parser.add_subparsers(dest="cmd", required=True)
    providers = [kind.value for kind in ProviderKind]

    p_check = sub.add_parser("check", help="Проверить связь с провайдером")
    p_check.add_argument("provider", choices=providers)
    p_check.add_argument("--api-key", default=None, help="Ключ (по умолчанию из env)")
    p_check.add_argument("--model", default=None, help="Модель (по умолчанию первая из списка)")
    p_check.add_argument("--prompt", default=CHECK_PROMPT, help="Текст запроса")
    p_check.add_argument("--stream", action="store_true", help="Стриминговый запрос")
    p_check.set_defaults(func=cmd_check)

    p_validate = sub.add_parser("validate", help="Проверить API ключ")
    p_validate.add_argument("provider", choices=providers)
    p_validate.add_argument("--api-key", default=None, help="Ключ (по умолчанию из env)")
    p_validate.add_argument("--model", default=None, help="Модель (нужна Anthropic для проверки)")
    p_validate.set_defaults(func=cmd_validate)

    p_models = sub.add_parser("models", help="Показать модели по умолчанию")
    p_models.add_argument("provider", choices=providers)
    p_models.set_defaults(func=cmd_models)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
