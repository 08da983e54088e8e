# Copyright (c) 2025 sprowii
from telegram import Update
from telegram.ext import Application, ApplicationBuilder

from linkguard import config
from linkguard.bot.handlers import register_handlers
from linkguard.bot.telegram_gateway import TelegramGateway
from linkguard.logging_config import log
from linkguard.moderation.controller import ModerationController
from linkguard.moderation.storage import WarningStore, create_redis_client
from linkguard.security.data_protection import encryption_enabled
from linkguard.web.server import start_web_server


async def _post_shutdown(application: Application) -> None:
    controller: ModerationController = application.bot_data["controller"]
    await controller.shutdown()


def main() -> None:
    config.require_runtime_settings()
    moderation_config = config.load_moderation_config()

    store = WarningStore(create_redis_client(config.REDIS_URL))
    if not store.ping():
        log.warning("Redis is not reachable yet, violations will be skipped until it is")

    application = (
        ApplicationBuilder()
        .token(config.TG_TOKEN)
        .concurrent_updates(True)
        .post_shutdown(_post_shutdown)
        .build()
    )
    gateway = TelegramGateway(application.bot)
    controller = ModerationController(gateway, store, moderation_config)
    application.bot_data["controller"] = controller
    register_handlers(application, controller, gateway)

    start_web_server(store)

    scope = ", ".join(sorted(moderation_config.enforced_group_ids)) or "all groups"
    log.info(f"LinkGuard started: threshold={moderation_config.warn_threshold}, scope={scope}")
    if not encryption_enabled():
        log.warning("DATA_ENCRYPTION_KEY не задан, имена нарушителей хранятся в Redis открыто")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
