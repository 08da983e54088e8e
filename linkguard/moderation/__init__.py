# Copyright (c) 2025 sprowii
"""Модуль модерации LinkGuard.

Компоненты:
- LinkDetector: Детектор ссылок и голосовых сообщений
- WarningStore: Хранилище предупреждений в Redis
- decide/render_template: Политика эскалации
- is_authorized/can_remove: Проверка прав
- ModerationController: Центральная точка входа для обработки сообщений
- ModLogger: Журнал действий модерации
"""

from linkguard.moderation.controller import (
    ModerationController,
    ModerationResult,
    MessageState,
    RemovalResult,
    parse_command,
)
from linkguard.moderation.detector import DetectionResult, LinkDetector, build_link_pattern, detect
from linkguard.moderation.errors import (
    ActionFailed,
    DeleteFailed,
    DetectionInputMalformed,
    DuplicateEvent,
    ModerationError,
    RemovalFailed,
    RemovalForbidden,
    SendFailed,
    StoreUnavailable,
)
from linkguard.moderation.escalation import decide, render_template
from linkguard.moderation.gateway import ChatGateway
from linkguard.moderation.logger import ModLogger
from linkguard.moderation.models import (
    ChatContext,
    Decision,
    DecisionAction,
    InboundMessage,
    MediaKind,
    MentionedUser,
    ModAction,
    ModerationConfig,
    Participant,
    SenderContext,
    WarningRecord,
)
from linkguard.moderation.permissions import can_remove, is_authorized
from linkguard.moderation.storage import WarningStore, create_redis_client

__all__ = [
    # Controller
    "ModerationController",
    "ModerationResult",
    "MessageState",
    "RemovalResult",
    "parse_command",
    # Detector
    "DetectionResult",
    "LinkDetector",
    "build_link_pattern",
    "detect",
    # Errors
    "ActionFailed",
    "DeleteFailed",
    "DetectionInputMalformed",
    "DuplicateEvent",
    "ModerationError",
    "RemovalFailed",
    "RemovalForbidden",
    "SendFailed",
    "StoreUnavailable",
    # Escalation
    "decide",
    "render_template",
    # Gateway
    "ChatGateway",
    # Logger
    "ModLogger",
    # Models
    "ChatContext",
    "Decision",
    "DecisionAction",
    "InboundMessage",
    "MediaKind",
    "MentionedUser",
    "ModAction",
    "ModerationConfig",
    "Participant",
    "SenderContext",
    "WarningRecord",
    # Permissions
    "can_remove",
    "is_authorized",
    # Storage
    "WarningStore",
    "create_redis_client",
]
