# Copyright (c) 2025 sprowii
"""Шлюз Telegram для модерации.

Переводит telegram.Message в InboundMessage/ChatContext/SenderContext
и выполняет действия через Bot API. Список админов группы кэшируется
на 5 минут.
"""
import time
from typing import Dict, List, Optional, Tuple

from telegram import Bot, Message
from telegram.constants import ChatMemberStatus, ChatType, MessageEntityType

from linkguard.logging_config import log
from linkguard.moderation.models import (
    ChatContext,
    InboundMessage,
    MediaKind,
    MentionedUser,
    Participant,
    SenderContext,
)
from linkguard.security.data_protection import pseudonymize_chat_id, pseudonymize_id

# Время жизни кэша админов в секундах (5 минут)
ADMIN_CACHE_TTL = 300

_ADMIN_STATUSES = (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER)
_GROUP_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)


def _display_name(user) -> str:
    return getattr(user, "full_name", None) or getattr(user, "username", None) or "member"


def _media_kind(message: Message) -> MediaKind:
    if message.voice or message.audio:
        return MediaKind.VOICE
    if (
        message.photo
        or message.video
        or message.document
        or message.animation
        or message.sticker
        or message.video_note
    ):
        return MediaKind.OTHER
    return MediaKind.NONE


def _mentions(message: Message) -> Tuple[MentionedUser, ...]:
    """Пользователи, на которых указывает команда.

    Ответ на сообщение и text_mention (упоминание без @username).
    Обычные @username Bot API в ID не переводит.
    """
    found: List[MentionedUser] = []
    seen = set()

    reply = message.reply_to_message
    if reply is not None and reply.from_user is not None and not reply.from_user.is_bot:
        found.append(MentionedUser(user_id=str(reply.from_user.id), display_name=_display_name(reply.from_user)))
        seen.add(reply.from_user.id)

    for entity in message.entities or ():
        if entity.type != MessageEntityType.TEXT_MENTION or entity.user is None:
            continue
        if entity.user.id in seen:
            continue
        found.append(MentionedUser(user_id=str(entity.user.id), display_name=_display_name(entity.user)))
        seen.add(entity.user.id)

    return tuple(found)


class TelegramGateway:
    """Реализация ChatGateway поверх python-telegram-bot."""

    def __init__(self, bot: Bot, admin_cache_ttl: int = ADMIN_CACHE_TTL):
        self.bot = bot
        self.admin_cache_ttl = admin_cache_ttl
        # {chat_id: (админы, timestamp)}
        self._admin_cache: Dict[int, Tuple[Tuple[Participant, ...], float]] = {}

    def to_inbound(self, message: Message) -> InboundMessage:
        """Перевести сообщение Telegram в InboundMessage."""
        return InboundMessage(
            message_id=str(message.message_id),
            group_id=str(message.chat_id),
            text=message.text or "",
            caption=message.caption or "",
            media_kind=_media_kind(message),
            mentions=_mentions(message),
            raw=message,
        )

    # ========================================================================
    # ADMIN CACHE
    # ========================================================================

    def invalidate_admin_cache(self, chat_id: Optional[int] = None) -> None:
        if chat_id is None:
            self._admin_cache.clear()
        else:
            self._admin_cache.pop(chat_id, None)

    async def _admins(self, chat_id: int) -> Tuple[Participant, ...]:
        cached = self._admin_cache.get(chat_id)
        if cached is not None and time.time() - cached[1] < self.admin_cache_ttl:
            return cached[0]

        members = await self.bot.get_chat_administrators(chat_id)
        admins = tuple(
            Participant(
                user_id=str(member.user.id),
                is_admin=member.status in _ADMIN_STATUSES,
                is_super_admin=member.status == ChatMemberStatus.OWNER,
            )
            for member in members
        )
        self._admin_cache[chat_id] = (admins, time.time())
        return admins

    # ========================================================================
    # ChatGateway
    # ========================================================================

    async def get_chat_context(self, message: InboundMessage) -> ChatContext:
        chat = message.raw.chat
        is_group = chat.type in _GROUP_TYPES
        participants = await self._admins(chat.id) if is_group else ()
        return ChatContext(
            group_id=str(chat.id),
            group_name=chat.title or "",
            is_group=is_group,
            participants=participants,
        )

    async def get_sender_context(self, message: InboundMessage) -> SenderContext:
        raw: Message = message.raw
        chat = raw.chat

        # Анонимный админ пишет от имени самой группы
        if raw.sender_chat is not None and raw.sender_chat.id == chat.id:
            return SenderContext(user_id=str(chat.id), display_name=chat.title or "admin", is_group_admin=True)

        user = raw.from_user
        if user is None:
            return SenderContext(user_id=str(raw.sender_chat.id) if raw.sender_chat else "", display_name="member")

        is_admin = False
        if chat.type in _GROUP_TYPES:
            admins = await self._admins(chat.id)
            is_admin = any(p.user_id == str(user.id) for p in admins)

        return SenderContext(user_id=str(user.id), display_name=_display_name(user), is_group_admin=is_admin)

    async def send_group_message(self, group_id: str, text: str) -> None:
        await self.bot.send_message(chat_id=int(group_id), text=text)

    async def delete_message(self, message: InboundMessage, for_everyone: bool = True) -> None:
        # В Telegram удаление ботом всегда для всех
        await message.raw.delete()

    async def remove_participant(self, group_id: str, user_id: str) -> None:
        """Кикнуть участника без бана: бан и сразу разбан."""
        chat_id = int(group_id)
        await self.bot.ban_chat_member(chat_id=chat_id, user_id=int(user_id))
        await self.bot.unban_chat_member(chat_id=chat_id, user_id=int(user_id), only_if_banned=True)
        log.info(f"Removed {pseudonymize_id(user_id)} from {pseudonymize_chat_id(group_id)}")

    async def self_is_group_admin(self, group_id: str) -> bool:
        member = await self.bot.get_chat_member(chat_id=int(group_id), user_id=self.bot.id)
        return member.status in _ADMIN_STATUSES
