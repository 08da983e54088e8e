# Copyright (c) 2025 sprowii
"""Логирование действий модерации.

В журнал Redis пишутся реальные ID (нужны для сброса и выгрузки),
в логи приложения - только псевдонимы.
"""
from typing import Optional

from linkguard.logging_config import log
from linkguard.moderation.errors import StoreUnavailable
from linkguard.moderation.models import ModAction
from linkguard.moderation.storage import WarningStore
from linkguard.security.data_protection import safe_log_action


class ModLogger:
    """Журнал действий модерации с записью в Redis."""

    def __init__(self, store: WarningStore):
        self.store = store

    async def log_action(
        self,
        group_id: str,
        action_type: str,
        target_user_id: str,
        reason: str,
        admin_id: Optional[str] = None,
    ) -> ModAction:
        """Записать действие в журнал группы и в лог приложения.

        Ошибка записи в Redis не мешает модерации: действие уже выполнено.
        """
        action = ModAction.create(
            group_id=group_id,
            action_type=action_type,
            target_user_id=target_user_id,
            reason=reason,
            admin_id=admin_id,
            auto=admin_id is None,
        )
        log.info(safe_log_action(action_type, target_user_id, group_id, admin_id, reason))

        try:
            await self.store.save_mod_action_async(action)
        except StoreUnavailable as exc:
            log.error(f"Failed to save mod action to Redis: {exc}")

        return action
