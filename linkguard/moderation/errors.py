# Copyright (c) 2025 sprowii
"""Ошибки модерации.

StoreUnavailable прерывает обработку текущего сообщения.
Ошибки действий (ActionFailed и наследники) не фатальны: они логируются,
а RemovalFailed/RemovalForbidden дополнительно сообщаются в группу.
"""


class ModerationError(Exception):
    """Базовая ошибка модерации."""


class DetectionInputMalformed(ModerationError):
    """Некорректный вход детектора. Трактуется как отсутствие нарушения."""


class StoreUnavailable(ModerationError):
    """Хранилище предупреждений недоступно."""


class ActionFailed(ModerationError):
    """Побочное действие через транспорт не удалось (включая таймаут)."""


class DeleteFailed(ActionFailed):
    pass


class SendFailed(ActionFailed):
    pass


class RemovalFailed(ActionFailed):
    pass


class RemovalForbidden(ActionFailed):
    """У бота нет прав администратора в группе."""


class DuplicateEvent(ModerationError):
    """Сообщение уже учтено (повторная доставка того же обновления)."""

    def __init__(self, count: int):
        super().__init__(f"event already counted, current count {count}")
        self.count = count
