# Copyright (c) 2025 sprowii
from telegram import Update
from telegram.ext import Application, ChatMemberHandler, ContextTypes, MessageHandler, filters

from linkguard.bot.telegram_gateway import TelegramGateway
from linkguard.logging_config import log
from linkguard.moderation.controller import ModerationController


def register_handlers(application: Application, controller: ModerationController, gateway: TelegramGateway) -> None:
    """Подключить модерацию к обновлениям Telegram."""

    async def handle_group_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None:
            return
        await controller.dispatch(gateway.to_inbound(message))

    async def handle_member_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        # Права участников изменились, список админов устарел
        if update.effective_chat is not None:
            gateway.invalidate_admin_cache(update.effective_chat.id)
            log.debug(f"Admin cache invalidated for chat {update.effective_chat.id}")

    application.add_handler(
        MessageHandler(filters.ChatType.GROUPS & ~filters.StatusUpdate.ALL, handle_group_message)
    )
    application.add_handler(ChatMemberHandler(handle_member_update, ChatMemberHandler.ANY_CHAT_MEMBER))
