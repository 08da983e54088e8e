# Copyright (c) 2025 sprowii
import os
from typing import FrozenSet, Optional, Tuple

from dotenv import load_dotenv

from linkguard.moderation.models import (
    DEFAULT_ACTION_TIMEOUT_SEC,
    DEFAULT_COMMAND_PREFIX,
    DEFAULT_KICK_TEMPLATE,
    DEFAULT_LINK_PREFIXES,
    DEFAULT_LINK_TLDS,
    DEFAULT_WARN_TEMPLATE,
    DEFAULT_WARN_THRESHOLD,
    ModerationConfig,
)

load_dotenv()


def _resolve_redis_url(raw_url: Optional[str]) -> Optional[str]:
    if raw_url and ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _split_csv(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_flag(env, name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


REDIS_URL = _resolve_redis_url(os.getenv("REDIS_URL"))
TG_TOKEN = os.getenv("TG_TOKEN")

FLASK_HOST = "0.0.0.0"
FLASK_PORT = int(os.getenv("PORT", 10000))


def require_runtime_settings() -> None:
    """Проверить переменные, без которых бот не запускается."""
    if not REDIS_URL:
        raise RuntimeError("Environment variable REDIS_URL must be set")
    if not TG_TOKEN:
        raise RuntimeError("Environment variable TG_TOKEN must be set")


def load_moderation_config(environ=None) -> ModerationConfig:
    """Собрать настройки модерации из переменных окружения.

    Args:
        environ: Словарь переменных (по умолчанию os.environ)

    Returns:
        Провалидированный ModerationConfig

    Raises:
        RuntimeError: если значения некорректны
    """
    env = os.environ if environ is None else environ

    try:
        threshold = int(env.get("WARN_THRESHOLD") or DEFAULT_WARN_THRESHOLD)
    except ValueError:
        raise RuntimeError(f"WARN_THRESHOLD must be an integer, got: {env.get('WARN_THRESHOLD')!r}")

    try:
        timeout = float(env.get("ACTION_TIMEOUT_SEC") or DEFAULT_ACTION_TIMEOUT_SEC)
    except ValueError:
        raise RuntimeError(f"ACTION_TIMEOUT_SEC must be a number, got: {env.get('ACTION_TIMEOUT_SEC')!r}")

    enforced: FrozenSet[str] = frozenset(_split_csv(env.get("ENFORCE_GROUP_IDS")))
    extra_tlds = tuple(t.lower().lstrip(".") for t in _split_csv(env.get("LINK_EXTRA_TLDS")))

    cfg = ModerationConfig(
        warn_threshold=threshold,
        warn_template=env.get("WARN_TEMPLATE") or DEFAULT_WARN_TEMPLATE,
        kick_template=env.get("KICK_TEMPLATE") or DEFAULT_KICK_TEMPLATE,
        enforced_group_ids=enforced,
        reset_on_removal=_env_flag(env, "RESET_ON_REMOVAL", True),
        allow_issuer_admin=_env_flag(env, "STATUS_ALLOW_ISSUER_ADMIN", True),
        allow_bot_admin=_env_flag(env, "STATUS_ALLOW_BOT_ADMIN", True),
        command_prefix=(env.get("COMMAND_PREFIX") or DEFAULT_COMMAND_PREFIX).strip(),
        action_timeout_sec=timeout,
        link_tlds=DEFAULT_LINK_TLDS + tuple(t for t in extra_tlds if t not in DEFAULT_LINK_TLDS),
        link_prefixes=DEFAULT_LINK_PREFIXES,
    )

    errors = cfg.validate()
    if errors:
        raise RuntimeError("Invalid moderation config: " + "; ".join(errors))
    return cfg
