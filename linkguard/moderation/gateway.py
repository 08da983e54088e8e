# Copyright (c) 2025 sprowii
"""Интерфейс транспорта, через который модерация выполняет действия.

Модерация не знает про объекты мессенджера: шлюз переводит их
в ChatContext/SenderContext и выполняет действия по InboundMessage.
Неудача любого действия сигнализируется исключением.
"""
from typing import Protocol

from linkguard.moderation.models import ChatContext, InboundMessage, SenderContext


class ChatGateway(Protocol):
    async def get_chat_context(self, message: InboundMessage) -> ChatContext:
        ...

    async def get_sender_context(self, message: InboundMessage) -> SenderContext:
        ...

    async def send_group_message(self, group_id: str, text: str) -> None:
        ...

    async def delete_message(self, message: InboundMessage, for_everyone: bool = True) -> None:
        ...

    async def remove_participant(self, group_id: str, user_id: str) -> None:
        ...

    async def self_is_group_admin(self, group_id: str) -> bool:
        ...
