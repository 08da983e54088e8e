# Copyright (c) 2025 sprowii
"""Проверка прав для административных команд и удаления участников.

Две проверки независимы:
- is_authorized: может ли отправитель пользоваться командами бота
- can_remove: может ли бот удалять участников (нужны права админа у самого бота)
"""
from typing import Optional

from linkguard.moderation.models import ModerationConfig

_DEFAULT_CONFIG = ModerationConfig()


def is_authorized(
    issuer_is_group_admin: bool,
    bot_is_group_admin: bool,
    cfg: Optional[ModerationConfig] = None,
) -> bool:
    """Разрешена ли отправителю административная команда.

    По умолчанию достаточно любого из условий: отправитель админ группы
    или бот админ группы. Каждое условие отключается в настройках
    (allow_issuer_admin / allow_bot_admin).

    Args:
        issuer_is_group_admin: Отправитель команды - админ группы
        bot_is_group_admin: Бот - админ группы
        cfg: Настройки модерации

    Returns:
        True если команда разрешена
    """
    cfg = cfg or _DEFAULT_CONFIG
    if cfg.allow_issuer_admin and issuer_is_group_admin:
        return True
    if cfg.allow_bot_admin and bot_is_group_admin:
        return True
    return False


def can_remove(bot_is_group_admin: bool) -> bool:
    """Удалять участников бот может только с правами админа."""
    return bool(bot_is_group_admin)
