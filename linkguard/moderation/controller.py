# Copyright (c) 2025 sprowii
"""Контроллер модерации: обработка входящих сообщений группы.

Команды "!linkguard ..." разбираются до исключения для админов.
Сброс предупреждений доступен только админам группы, остальным
участникам справочные команды отвечают, только если сообщение
не нарушает правила.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from linkguard.logging_config import log
from linkguard.moderation.detector import LinkDetector
from linkguard.moderation.errors import (
    ActionFailed,
    DeleteFailed,
    DuplicateEvent,
    ModerationError,
    RemovalFailed,
    RemovalForbidden,
    SendFailed,
    StoreUnavailable,
)
from linkguard.moderation.escalation import decide
from linkguard.moderation.gateway import ChatGateway
from linkguard.moderation.logger import ModLogger
from linkguard.moderation.models import (
    ChatContext,
    Decision,
    DecisionAction,
    InboundMessage,
    ModerationConfig,
    SenderContext,
)
from linkguard.moderation.permissions import can_remove, is_authorized
from linkguard.moderation.storage import WarningStore
from linkguard.security.data_protection import pseudonymize_chat_id, pseudonymize_id

REMOVED_TEMPLATE = "🔴 Removed {name} 🔴"
REMOVAL_FAILED_TEMPLATE = "❌ Tried to remove {name} but failed: {error}"
NOT_ADMIN_NOTICE = "ℹ️ I can't remove members because I'm not a group admin."
STATUS_TEMPLATE = "LinkGuard active. Threshold: {limit}. Group: {group}"
RESET_DONE_TEMPLATE = "✅ Reset warnings for {name}"
RESET_FAILED_TEMPLATE = "⚠️ Could not reset warnings for {name}, storage is unavailable"
WARNS_LINE_TEMPLATE = "{name}: {count}/{limit} warnings"
USAGE_TEMPLATE = "Usage: {prefix} {command} @user"
HELP_TEMPLATE = (
    "LinkGuard commands:\n"
    "• {prefix} status - show status\n"
    "• {prefix} warns @user - show warnings for a user\n"
    "• {prefix} reset @user - reset warnings for a user"
)

# Команды, доступные не-админам при разрешении через права бота
MEMBER_COMMANDS = frozenset({"", "help", "status", "warns"})


class MessageState(str, Enum):
    """Чем закончилась обработка сообщения."""
    FILTERED = "filtered"
    COMMAND = "command"
    ABORTED = "aborted"
    WARNED = "warned"
    ESCALATION_ATTEMPTED = "escalation_attempted"


class RemovalResult(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    REMOVED = "removed"
    FAILED = "failed"
    FORBIDDEN = "forbidden"


@dataclass
class ModerationResult:
    """Результат обработки одного сообщения.

    errors содержит нефатальные ошибки действий (удаление, отправка, ...).
    """
    state: MessageState
    reason: str = ""
    decision: Optional[Decision] = None
    removal: RemovalResult = RemovalResult.NOT_ATTEMPTED
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AdminCommand:
    name: str
    args: str = ""


def parse_command(text: Optional[str], prefix: str) -> Optional[AdminCommand]:
    """Разобрать "!linkguard <команда> [аргументы]".

    Returns:
        AdminCommand (name пустой для голого префикса) или None,
        если сообщение не является командой
    """
    if not text or not isinstance(text, str):
        return None

    stripped = text.strip()
    if not stripped.lower().startswith(prefix.lower()):
        return None

    rest = stripped[len(prefix):]
    if rest and not rest[0].isspace():
        # "!linkguardian" - не наша команда
        return None

    parts = rest.split(maxsplit=1)
    if not parts:
        return AdminCommand(name="")
    return AdminCommand(name=parts[0].lower(), args=parts[1] if len(parts) > 1 else "")


class ModerationController:
    """Центральный контроллер модерации.

    Связывает детектор, хранилище предупреждений и политику эскалации
    и выполняет действия через шлюз транспорта. Каждое сообщение
    обрабатывается изолированно: ошибка одного не влияет на следующие.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        store: WarningStore,
        config: ModerationConfig,
        detector: Optional[LinkDetector] = None,
        mod_logger: Optional[ModLogger] = None,
    ):
        """
        Args:
            gateway: Шлюз транспорта
            store: Хранилище предупреждений
            config: Настройки модерации
            detector: Детектор нарушений (по умолчанию собирается из config)
            mod_logger: Журнал действий модерации
        """
        self.gateway = gateway
        self.store = store
        self.config = config
        self.detector = detector or LinkDetector.from_tables(config.link_tlds, config.link_prefixes)
        self.mod_logger = mod_logger or ModLogger(store)
        self._inflight: Set[asyncio.Task] = set()

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    async def dispatch(self, message: InboundMessage) -> Optional[ModerationResult]:
        """Обработать сообщение, перехватив любые ошибки.

        Returns:
            ModerationResult или None, если обработка упала
        """
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            return await self.on_message(message)
        except Exception as exc:
            log.error(f"Handler error for message {message.message_id}: {exc}", exc_info=True)
            return None
        finally:
            if task is not None:
                self._inflight.discard(task)

    async def shutdown(self) -> None:
        """Дождаться обрабатываемых сообщений и закрыть хранилище."""
        current = asyncio.current_task()
        pending = [task for task in self._inflight if task is not current]
        if pending:
            log.info(f"Waiting for {len(pending)} in-flight messages before shutdown")
            await asyncio.gather(*pending, return_exceptions=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.store.close)
        log.info("ModerationController stopped")

    async def on_message(self, message: InboundMessage) -> ModerationResult:
        """Проверить сообщение и применить меры.

        Порядок: фильтры (не группа, группа вне списка), админ-команды,
        исключение для админов, детектор, счётчик, предупреждение или удаление.
        """
        chat = await self._call(self.gateway.get_chat_context(message), ActionFailed)
        if not chat.is_group:
            return ModerationResult(state=MessageState.FILTERED, reason="not_group")

        if not self.config.enforces(chat.group_id):
            return ModerationResult(state=MessageState.FILTERED, reason="group_not_enforced")

        sender = await self._call(self.gateway.get_sender_context(message), ActionFailed)
        sender_is_admin = sender.is_group_admin or chat.is_admin(sender.user_id)

        command = parse_command(message.text, self.config.command_prefix)
        if command is not None:
            bot_is_admin = await self._self_is_admin(chat.group_id)
            if self._command_allowed(command, message, sender_is_admin, bot_is_admin):
                return await self._handle_command(command, message, chat, sender)
            # Остальное модерируется как обычное сообщение
            log.debug(f"Unauthorized command from {pseudonymize_id(sender.user_id)}")

        # Админы группы не модерируются
        if sender_is_admin:
            return ModerationResult(state=MessageState.FILTERED, reason="sender_is_admin")

        detection = self.detector.check(message.text, message.caption, message.media_kind)
        if not detection.is_violation:
            return ModerationResult(state=MessageState.FILTERED, reason="no_violation")

        log.info(
            f"Detected {detection.reason} in {pseudonymize_chat_id(chat.group_id)} "
            f"from {pseudonymize_id(sender.user_id)}"
        )

        try:
            count = await self.store.increment_async(
                chat.group_id,
                sender.user_id,
                sender.display_name,
                event_id=message.message_id,
            )
        except DuplicateEvent as exc:
            log.info(f"Message {message.message_id} already counted ({exc.count}), skipping")
            return ModerationResult(state=MessageState.FILTERED, reason="duplicate")
        except StoreUnavailable as exc:
            log.error(f"Moderation aborted for message {message.message_id}: {exc}")
            return ModerationResult(state=MessageState.ABORTED, reason="store_unavailable", errors=[str(exc)])

        decision = decide(count, sender.display_name, self.config)
        result = ModerationResult(state=MessageState.WARNED, reason=detection.reason or "", decision=decision)

        await self._delete_offending(message, result)

        if decision.action == DecisionAction.WARN:
            await self._send(chat.group_id, decision.rendered_text, result)
            await self.mod_logger.log_action(
                chat.group_id, "warn", sender.user_id,
                f"{detection.reason} {count}/{self.config.warn_threshold}",
            )
            return result

        result.state = MessageState.ESCALATION_ATTEMPTED
        await self._escalate(chat, sender, decision, result)
        return result

    # ========================================================================
    # ESCALATION
    # ========================================================================

    async def _escalate(
        self,
        chat: ChatContext,
        sender: SenderContext,
        decision: Decision,
        result: ModerationResult,
    ) -> None:
        """Отправить уведомление и попытаться удалить участника.

        При неудаче запись предупреждений остаётся, следующее нарушение
        повторит попытку удаления.
        """
        group_id = chat.group_id
        name = sender.display_name

        await self._send(group_id, decision.rendered_text, result)
        await self.mod_logger.log_action(
            group_id, "kick", sender.user_id,
            f"{decision.warning_count}/{self.config.warn_threshold} warnings",
        )

        bot_is_admin = await self._self_is_admin(group_id)
        if not can_remove(bot_is_admin):
            error = RemovalForbidden("bot is not a group admin")
            result.removal = RemovalResult.FORBIDDEN
            result.errors.append(str(error))
            await self._send(group_id, NOT_ADMIN_NOTICE, result)
            await self.mod_logger.log_action(group_id, "remove_forbidden", sender.user_id, str(error))
            return

        try:
            await self._call(self.gateway.remove_participant(group_id, sender.user_id), RemovalFailed)
        except RemovalFailed as exc:
            log.warning(f"Removal of {pseudonymize_id(sender.user_id)} failed: {exc}")
            result.removal = RemovalResult.FAILED
            result.errors.append(str(exc))
            await self._send(group_id, REMOVAL_FAILED_TEMPLATE.format(name=name, error=exc), result)
            await self.mod_logger.log_action(group_id, "remove_failed", sender.user_id, str(exc))
            return

        result.removal = RemovalResult.REMOVED
        await self._send(group_id, REMOVED_TEMPLATE.format(name=name), result)
        await self.mod_logger.log_action(group_id, "remove", sender.user_id, "warning threshold reached")

        if self.config.reset_on_removal:
            try:
                await self.store.reset_async(group_id, sender.user_id)
            except StoreUnavailable as exc:
                log.error(f"Could not reset warnings after removal: {exc}")
                result.errors.append(str(exc))

    # ========================================================================
    # ADMIN COMMANDS
    # ========================================================================

    def _command_allowed(
        self,
        command: AdminCommand,
        message: InboundMessage,
        sender_is_admin: bool,
        bot_is_admin: bool,
    ) -> bool:
        """Выполнять ли команду вместо обычной модерации.

        Админ группы может любую команду (неизвестные молча игнорируются).
        Не-админ проходит только через права бота, только со справочной
        командой и только если в сообщении нет нарушения.
        """
        if not is_authorized(sender_is_admin, bot_is_admin, self.config):
            return False
        if sender_is_admin:
            return True
        if command.name not in MEMBER_COMMANDS:
            return False
        return not self.detector.detect(message.text, message.caption, message.media_kind)

    async def _handle_command(
        self,
        command: AdminCommand,
        message: InboundMessage,
        chat: ChatContext,
        sender: SenderContext,
    ) -> ModerationResult:
        """Выполнить разрешённую команду. Неизвестные команды молча игнорируются."""
        prefix = self.config.command_prefix
        result = ModerationResult(state=MessageState.COMMAND, reason=command.name or "help")

        if command.name == "status":
            text = STATUS_TEMPLATE.format(limit=self.config.warn_threshold, group=chat.group_name)
            await self._send(chat.group_id, text, result)
        elif command.name in ("", "help"):
            await self._send(chat.group_id, HELP_TEMPLATE.format(prefix=prefix), result)
        elif command.name == "reset":
            await self._reset_mentioned(message, chat, sender, result)
        elif command.name == "warns":
            await self._show_warns(message, chat, result)
        else:
            return ModerationResult(state=MessageState.FILTERED, reason="unknown_command")

        return result

    async def _reset_mentioned(
        self,
        message: InboundMessage,
        chat: ChatContext,
        sender: SenderContext,
        result: ModerationResult,
    ) -> None:
        if not message.mentions:
            usage = USAGE_TEMPLATE.format(prefix=self.config.command_prefix, command="reset")
            await self._send(chat.group_id, usage, result)
            return

        for mention in message.mentions:
            try:
                await self.store.reset_async(chat.group_id, mention.user_id)
            except StoreUnavailable as exc:
                result.errors.append(str(exc))
                await self._send(chat.group_id, RESET_FAILED_TEMPLATE.format(name=mention.display_name), result)
                continue

            await self.mod_logger.log_action(
                chat.group_id, "reset", mention.user_id, "manual reset", admin_id=sender.user_id,
            )
            await self._send(chat.group_id, RESET_DONE_TEMPLATE.format(name=mention.display_name), result)

    async def _show_warns(self, message: InboundMessage, chat: ChatContext, result: ModerationResult) -> None:
        if not message.mentions:
            usage = USAGE_TEMPLATE.format(prefix=self.config.command_prefix, command="warns")
            await self._send(chat.group_id, usage, result)
            return

        lines = []
        for mention in message.mentions:
            try:
                record = await self.store.get_async(chat.group_id, mention.user_id)
            except StoreUnavailable as exc:
                result.errors.append(str(exc))
                continue
            lines.append(WARNS_LINE_TEMPLATE.format(
                name=mention.display_name,
                count=record.count,
                limit=self.config.warn_threshold,
            ))

        if lines:
            await self._send(chat.group_id, "\n".join(lines), result)

    # ========================================================================
    # SIDE EFFECTS
    # ========================================================================

    async def _call(self, awaitable, error_cls: type):
        """Выполнить вызов шлюза с таймаутом, переводя ошибки в error_cls."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.action_timeout_sec)
        except asyncio.TimeoutError as exc:
            raise error_cls(f"timed out after {self.config.action_timeout_sec:g}s") from exc
        except ModerationError:
            raise
        except Exception as exc:
            raise error_cls(str(exc) or exc.__class__.__name__) from exc

    async def _self_is_admin(self, group_id: str) -> bool:
        try:
            return bool(await self._call(self.gateway.self_is_group_admin(group_id), ActionFailed))
        except ActionFailed as exc:
            log.warning(f"Could not check bot admin status in {pseudonymize_chat_id(group_id)}: {exc}")
            return False

    async def _send(self, group_id: str, text: str, result: ModerationResult) -> bool:
        try:
            await self._call(self.gateway.send_group_message(group_id, text), SendFailed)
            return True
        except SendFailed as exc:
            log.warning(f"Failed to send message to {pseudonymize_chat_id(group_id)}: {exc}")
            result.errors.append(str(exc))
            return False

    async def _delete_offending(self, message: InboundMessage, result: ModerationResult) -> bool:
        try:
            await self._call(self.gateway.delete_message(message, True), DeleteFailed)
            return True
        except DeleteFailed as exc:
            log.warning(f"Failed to delete message {message.message_id}: {exc}")
            result.errors.append(str(exc))
            return False
