# Copyright (c) 2025 sprowii
"""Хранилище предупреждений и журнала модерации в Redis.

Ключи:
- warn:{group_id}:{user_id} - HASH с записью предупреждений пользователя
- warn_evt:{group_id}:{message_id} - маркер уже учтённого сообщения (с TTL)
- modlog:{group_id} - журнал автоматических действий модерации

Запись создаётся при первом нарушении и удаляется только через reset.
Ошибки Redis поднимаются как StoreUnavailable: считать их "нулём
предупреждений" нельзя, иначе повторный нарушитель начнёт с чистого листа.
"""
import asyncio
import functools
import json
import time
from dataclasses import asdict
from typing import Dict, List, Optional

import redis

from linkguard.logging_config import log
from linkguard.moderation.errors import DuplicateEvent, StoreUnavailable
from linkguard.moderation.models import ModAction, WarningRecord
from linkguard.security.data_protection import decrypt_pii, encrypt_pii, pseudonymize_chat_id, pseudonymize_id

# Префиксы ключей
WARN_PREFIX = "warn:"
WARN_EVENT_PREFIX = "warn_evt:"
MODLOG_PREFIX = "modlog:"

# Максимальное количество записей в журнале модерации
MAX_MODLOG_ENTRIES = 1000

# Сколько помнить уже учтённые сообщения
EVENT_TTL_SECONDS = 24 * 3600


def create_redis_client(url: str) -> redis.Redis:
    """Создать клиент Redis для хранилища."""
    return redis.Redis.from_url(url, decode_responses=True, health_check_interval=30)


def warn_key(group_id: str, user_id: str) -> str:
    return f"{WARN_PREFIX}{group_id}:{user_id}"


def _event_key(group_id: str, event_id: str) -> str:
    return f"{WARN_EVENT_PREFIX}{group_id}:{event_id}"


def _modlog_key(group_id: str) -> str:
    return f"{MODLOG_PREFIX}{group_id}"


def _parse_record(group_id: str, user_id: str, data: Dict[str, str]) -> WarningRecord:
    """Собрать WarningRecord из HASH. Пустой HASH - нулевая запись."""
    if not data:
        return WarningRecord.empty(group_id, user_id)

    try:
        count = int(data.get("count", 0))
    except ValueError:
        log.warning(f"Некорректный счётчик предупреждений в {pseudonymize_chat_id(group_id)}: {data.get('count')!r}")
        count = 0

    first_seen_at: Optional[float]
    try:
        first_seen_at = float(data["first_seen_at"]) if data.get("first_seen_at") else None
    except ValueError:
        first_seen_at = None

    return WarningRecord(
        group_id=group_id,
        user_id=user_id,
        count=max(count, 0),
        display_name=decrypt_pii(data.get("display_name", "")),
        first_seen_at=first_seen_at,
    )


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class WarningStore:
    """Долговременное хранилище счётчиков (group_id, user_id) -> WarningRecord.

    Синхронные методы выполняют запросы к Redis напрямую, *_async варианты
    уносят их в пул потоков. increment_async сериализует вызовы для одного
    ключа через asyncio.Lock, сам инкремент выполняется в MULTI/EXEC.
    """

    def __init__(self, client: redis.Redis, event_ttl_sec: int = EVENT_TTL_SECONDS):
        self.client = client
        self.event_ttl_sec = event_ttl_sec
        # Блокировки живут, пока ими кто-то пользуется
        self._locks: Dict[str, _KeyLock] = {}

    # ========================================================================
    # WARNINGS
    # ========================================================================

    def increment(
        self,
        group_id: str,
        user_id: str,
        display_name: str,
        event_id: Optional[str] = None,
    ) -> int:
        """Добавить одно предупреждение и вернуть новый счётчик.

        Создаёт запись при отсутствии (first_seen_at = сейчас), всегда
        обновляет display_name. Если передан event_id, повторный вызов для
        того же сообщения ничего не добавляет.

        Args:
            group_id: ID группы
            user_id: ID нарушителя
            display_name: Текущее отображаемое имя
            event_id: ID исходного сообщения для защиты от двойного учёта

        Returns:
            Количество предупреждений после инкремента

        Raises:
            DuplicateEvent: если event_id уже учтён (count - текущий счётчик)
            StoreUnavailable: если Redis недоступен
        """
        key = warn_key(group_id, user_id)
        marker = _event_key(group_id, event_id) if event_id is not None else None
        marker_set = False

        try:
            if marker is not None:
                if not self.client.set(marker, user_id, nx=True, ex=self.event_ttl_sec):
                    log.info(
                        f"Duplicate warning event ignored: chat={pseudonymize_chat_id(group_id)}, "
                        f"user={pseudonymize_id(user_id)}"
                    )
                    current = _parse_record(group_id, user_id, self.client.hgetall(key)).count
                    raise DuplicateEvent(current)
                marker_set = True

            with self.client.pipeline(transaction=True) as pipe:
                pipe.hsetnx(key, "first_seen_at", repr(time.time()))
                pipe.hset(key, mapping={
                    "group_id": group_id,
                    "user_id": user_id,
                    "display_name": encrypt_pii(display_name or ""),
                })
                pipe.hincrby(key, "count", 1)
                results = pipe.execute()
        except redis.RedisError as exc:
            log.error(f"Не удалось увеличить счётчик предупреждений для {pseudonymize_id(user_id)}: {exc}")
            if marker_set:
                self._release_marker(marker)
            raise StoreUnavailable(f"warning store unavailable: {exc}") from exc

        return int(results[-1])

    def _release_marker(self, marker: str) -> None:
        # Без маркера повтор того же сообщения снова сможет посчитаться
        try:
            self.client.delete(marker)
        except redis.RedisError as exc:
            log.warning(f"Не удалось удалить маркер события {marker}: {exc}")

    def get(self, group_id: str, user_id: str) -> WarningRecord:
        """Получить запись предупреждений (нулевую, если записи нет)."""
        try:
            data = self.client.hgetall(warn_key(group_id, user_id))
        except redis.RedisError as exc:
            log.error(f"Ошибка загрузки предупреждений для {pseudonymize_id(user_id)}: {exc}")
            raise StoreUnavailable(f"warning store unavailable: {exc}") from exc
        return _parse_record(group_id, user_id, data)

    def reset(self, group_id: str, user_id: str) -> bool:
        """Удалить запись предупреждений. Возвращает True, если запись была."""
        try:
            removed = self.client.delete(warn_key(group_id, user_id)) > 0
        except redis.RedisError as exc:
            log.error(f"Ошибка сброса предупреждений для {pseudonymize_id(user_id)}: {exc}")
            raise StoreUnavailable(f"warning store unavailable: {exc}") from exc

        if removed:
            log.info(f"Warnings reset: chat={pseudonymize_chat_id(group_id)}, user={pseudonymize_id(user_id)}")
        return removed

    async def increment_async(
        self,
        group_id: str,
        user_id: str,
        display_name: str,
        event_id: Optional[str] = None,
    ) -> int:
        """Асинхронно увеличить счётчик, по одному вызову на ключ одновременно."""
        key = warn_key(group_id, user_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()

        entry.users += 1
        try:
            async with entry.lock:
                return await self._run(self.increment, group_id, user_id, display_name, event_id)
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def get_async(self, group_id: str, user_id: str) -> WarningRecord:
        return await self._run(self.get, group_id, user_id)

    async def reset_async(self, group_id: str, user_id: str) -> bool:
        return await self._run(self.reset, group_id, user_id)

    # ========================================================================
    # MODLOG
    # ========================================================================

    def save_mod_action(self, action: ModAction) -> None:
        """Сохранить действие модерации в журнал группы."""
        key = _modlog_key(action.group_id)
        try:
            with self.client.pipeline() as pipe:
                pipe.lpush(key, json.dumps(asdict(action), ensure_ascii=False))
                pipe.ltrim(key, 0, MAX_MODLOG_ENTRIES - 1)
                pipe.execute()
        except redis.RedisError as exc:
            log.error(f"Не удалось сохранить действие модерации: {exc}")
            raise StoreUnavailable(f"warning store unavailable: {exc}") from exc

    async def save_mod_action_async(self, action: ModAction) -> None:
        await self._run(self.save_mod_action, action)

    def load_mod_log(
        self,
        group_id: str,
        limit: int = 20,
        user_id: Optional[str] = None
    ) -> List[ModAction]:
        """Загрузить журнал модерации, новые записи первыми.

        Args:
            group_id: ID группы
            limit: Максимальное количество записей
            user_id: Если указан, фильтровать по нарушителю
        """
        key = _modlog_key(group_id)
        # Загружаем больше записей если нужна фильтрация
        fetch_limit = limit * 5 if user_id else limit
        try:
            raw_values = self.client.lrange(key, 0, fetch_limit - 1)
        except redis.RedisError as exc:
            log.error(f"Ошибка загрузки журнала модерации для {pseudonymize_chat_id(group_id)}: {exc}")
            raise StoreUnavailable(f"warning store unavailable: {exc}") from exc

        actions = []
        for raw in raw_values:
            try:
                action = ModAction(**json.loads(raw))
            except (json.JSONDecodeError, TypeError) as exc:
                log.warning(f"Некорректные данные действия модерации: {exc}")
                continue

            if user_id is not None and action.target_user_id != user_id:
                continue
            actions.append(action)
            if len(actions) >= limit:
                break

        return actions

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            log.warning(f"Redis ping failed: {exc}")
            return False

    def close(self) -> None:
        self.client.close()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))
