"""Application entry point.

Initializes storage, wires the price watcher pipeline to the Telegram bot and
runs the bot in long-polling mode. The price watcher is started once the bot
application is initialized and stopped on shutdown.
"""

import logging

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from .bot import handlers
from .config import config
from .core.container import Container

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(levelname)s - %(message)s",
        level=getattr(logging, config.bot.log_level.upper(), logging.INFO),
    )
    # httpx logs every Telegram API request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_application(container: Container) -> Application:
    """Build the Telegram application around a wired container.

    Args:
        container: DI container with configuration loaded.

    Returns:
        Configured Application instance.
    """
    app = Application.builder().token(config.bot.bot_token).build()
    container.bot.override(app.bot)

    async def post_init(application: Application) -> None:
        # Storage problems at startup are fatal
        container.product_store().initialize()
        directory = container.subscriber_directory()
        directory.initialize()
        application.bot_data[handlers.DIRECTORY_KEY] = directory
        application.bot_data[handlers.STORE_KEY] = container.product_store()
        application.bot_data[handlers.FETCHER_KEY] = container.fetcher()
        application.bot_data[handlers.TRACKER_KEY] = container.message_tracker()

        container.price_watcher().start()

    async def post_shutdown(application: Application) -> None:
        container.price_watcher().stop()

    app.post_init = post_init
    app.post_shutdown = post_shutdown

    app.add_handler(CommandHandler("start", handlers.start))
    app.add_handler(CommandHandler("subs", handlers.show_subscriptions))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handlers.handle_text))

    callbacks = [
        (handlers.SUBSCRIBE_PATTERN, handlers.handle_subscribe),
        (handlers.UNSUBSCRIBE_PATTERN, handlers.handle_unsubscribe_request),
        (handlers.CONFIRM_UNSUB_PATTERN, handlers.handle_unsubscribe_confirm),
        (handlers.CANCEL_UNSUB_PATTERN, handlers.handle_unsubscribe_cancel),
        (handlers.UNSUB_ALL_CONFIRM_PATTERN, handlers.handle_unsubscribe_all_request),
        (handlers.UNSUB_ALL_EXECUTE_PATTERN, handlers.handle_unsubscribe_all_confirm),
        (handlers.CANCEL_UNSUB_ALL_PATTERN, handlers.handle_unsubscribe_all_cancel),
    ]
    for pattern, callback in callbacks:
        app.add_handler(CallbackQueryHandler(callback, pattern=pattern))

    app.add_error_handler(handlers.error_handler)
    return app


def main() -> None:
    """Main application entry point.

    Raises:
        RuntimeError: If BOT_TOKEN environment variable is not set.
    """
    configure_logging()

    if not config.bot.bot_token:
        raise RuntimeError("Set BOT_TOKEN environment variable")

    container = Container()
    container.config.from_dict(config.as_dict())

    app = build_application(container)
    logger.info("Starting bot in polling mode")
    app.run_polling()


if __name__ == "__main__":
    main()
