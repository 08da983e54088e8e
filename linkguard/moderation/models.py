# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Tuple
import time
import uuid


DEFAULT_WARN_THRESHOLD = 3
DEFAULT_WARN_TEMPLATE = "⚠️ {name}, links are not allowed. Warning {count}/{limit}"
DEFAULT_KICK_TEMPLATE = "🚨 {name} exceeded {limit} warnings. Removing from group…"
DEFAULT_COMMAND_PREFIX = "!linkguard"
DEFAULT_ACTION_TIMEOUT_SEC = 60.0

# Домены верхнего уровня, которые считаются ссылкой даже без схемы
DEFAULT_LINK_TLDS: Tuple[str, ...] = (
    "com", "net", "org", "info", "io", "co", "us", "uk",
    "pk", "in", "gov", "edu", "de", "me", "ly",
)
DEFAULT_LINK_PREFIXES: Tuple[str, ...] = ("http://", "https://", "www.")


class MediaKind(str, Enum):
    """Тип вложения сообщения, важный для модерации."""
    NONE = "none"
    VOICE = "voice"
    OTHER = "other"


class DecisionAction(str, Enum):
    """Решение политики эскалации."""
    WARN = "warn"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class ModerationConfig:
    """Настройки модерации процесса.

    Загружаются один раз при старте и дальше только читаются.
    Пустой enforced_group_ids означает модерацию во всех группах.
    """
    warn_threshold: int = DEFAULT_WARN_THRESHOLD
    warn_template: str = DEFAULT_WARN_TEMPLATE
    kick_template: str = DEFAULT_KICK_TEMPLATE
    enforced_group_ids: FrozenSet[str] = frozenset()

    # Сбрасывать ли счётчик после успешного удаления участника
    reset_on_removal: bool = True

    # Кто может пользоваться командами: админ-отправитель и/или любой, если бот админ
    allow_issuer_admin: bool = True
    allow_bot_admin: bool = True

    command_prefix: str = DEFAULT_COMMAND_PREFIX
    action_timeout_sec: float = DEFAULT_ACTION_TIMEOUT_SEC

    link_tlds: Tuple[str, ...] = DEFAULT_LINK_TLDS
    link_prefixes: Tuple[str, ...] = DEFAULT_LINK_PREFIXES

    def enforces(self, group_id: str) -> bool:
        """Модерируется ли группа с учётом allow-list."""
        return not self.enforced_group_ids or group_id in self.enforced_group_ids

    def validate(self) -> List[str]:
        """Валидация настроек. Возвращает список ошибок."""
        errors = []

        if not isinstance(self.warn_threshold, int) or self.warn_threshold < 1:
            errors.append(f"warn_threshold must be a positive integer, got: {self.warn_threshold!r}")
        if not self.warn_template:
            errors.append("warn_template must not be empty")
        if not self.kick_template:
            errors.append("kick_template must not be empty")
        if not self.command_prefix or any(ch.isspace() for ch in self.command_prefix):
            errors.append(f"command_prefix must be a single non-empty word, got: {self.command_prefix!r}")
        if self.action_timeout_sec <= 0:
            errors.append(f"action_timeout_sec must be positive, got: {self.action_timeout_sec}")
        if not self.link_tlds:
            errors.append("link_tlds must not be empty")
        if not self.link_prefixes:
            errors.append("link_prefixes must not be empty")

        return errors


@dataclass
class WarningRecord:
    """Накопленные нарушения пользователя в одной группе.

    Отсутствие записи эквивалентно count == 0.
    display_name хранит последнее увиденное имя, first_seen_at задаётся один раз.
    """
    group_id: str
    user_id: str
    count: int = 0
    display_name: str = ""
    first_seen_at: Optional[float] = None

    @classmethod
    def empty(cls, group_id: str, user_id: str) -> "WarningRecord":
        return cls(group_id=group_id, user_id=user_id)

    @property
    def exists(self) -> bool:
        return self.count > 0


@dataclass(frozen=True)
class Decision:
    """Результат политики эскалации для одного сообщения."""
    action: DecisionAction
    rendered_text: str
    warning_count: int


@dataclass(frozen=True)
class Participant:
    user_id: str
    is_admin: bool = False
    is_super_admin: bool = False


@dataclass(frozen=True)
class ChatContext:
    """Контекст чата, в который пришло сообщение."""
    group_id: str
    group_name: str
    is_group: bool
    participants: Tuple[Participant, ...] = ()

    def is_admin(self, user_id: str) -> bool:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant.is_admin or participant.is_super_admin
        return False


@dataclass(frozen=True)
class SenderContext:
    """Автор сообщения."""
    user_id: str
    display_name: str
    is_group_admin: bool = False


@dataclass(frozen=True)
class MentionedUser:
    """Пользователь, упомянутый в команде (reset/warns)."""
    user_id: str
    display_name: str


@dataclass(frozen=True)
class InboundMessage:
    """Входящее сообщение в независимом от транспорта виде.

    raw - исходный объект транспорта, его читает только шлюз
    (например, для удаления сообщения).
    """
    message_id: str
    group_id: str
    text: str = ""
    caption: str = ""
    media_kind: MediaKind = MediaKind.NONE
    mentions: Tuple[MentionedUser, ...] = ()
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass
class ModAction:
    """Автоматическое действие модерации для журнала."""
    id: str
    group_id: str
    action_type: str  # warn, kick, remove, remove_failed, remove_forbidden, reset
    target_user_id: str
    admin_id: Optional[str]  # None для автоматических действий
    reason: str
    timestamp: float
    auto: bool = False

    @classmethod
    def create(
        cls,
        group_id: str,
        action_type: str,
        target_user_id: str,
        reason: str,
        admin_id: Optional[str] = None,
        auto: bool = False
    ) -> "ModAction":
        """Создать новое действие модерации с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            group_id=group_id,
            action_type=action_type,
            target_user_id=target_user_id,
            admin_id=admin_id,
            reason=reason,
            timestamp=time.time(),
            auto=auto
        )
