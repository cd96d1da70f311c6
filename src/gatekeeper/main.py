"""
Main entry point for the gatekeeper bot.

This module initializes the bot application, registers all handlers,
and starts the polling (or webhook) loop. Components:
1. Challenge controller: stored in bot_data, shared by all captcha handlers
2. Captcha handlers: joins, answers (text and buttons), service messages
3. DM handler: /start, /ping and /version in private chats
4. Release worker: JobQueue job lifting captcha bans when they are due
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from gatekeeper.config import Settings, get_settings
from gatekeeper.database.service import DatabaseService, init_database
from gatekeeper.handlers.captcha import CONTROLLER_KEY, get_handlers
from gatekeeper.handlers.dm import handle_dm
from gatekeeper.services.challenge_controller import ChallengeController
from gatekeeper.services.challenge_registry import ChallengeRegistry
from gatekeeper.services.moderation import TelegramModeration
from gatekeeper.services.release_worker import (
    RELEASE_JOB_NAME,
    release_due_bans,
    worker_interval,
)

# Configure logging format for the application
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "callback_query", "chat_member"]


async def post_init(application: Application) -> None:  # type: ignore[type-arg]
    """
    Post-initialization callback reporting configuration warnings.

    Args:
        application: The Application instance.
    """
    settings = get_settings()
    for warning in settings.config_warnings:
        logger.warning(f"Config: {warning}")
    logger.info(
        f"Captcha: length={settings.captcha_length} timeout={settings.captcha_timeout_seconds}s "
        f"update={settings.captcha_caption_update_seconds}s "
        f"size={settings.captcha_width}x{settings.captcha_height} "
        f"options={settings.captcha_option_count} attempts={settings.captcha_attempts}"
    )


async def post_shutdown(application: Application) -> None:  # type: ignore[type-arg]
    """
    Drop in-memory challenges on shutdown.

    Pending challenges are not persisted, so members still restricted at
    this point stay restricted until an admin intervenes.
    """
    controller = application.bot_data.get(CONTROLLER_KEY)  # type: ignore[union-attr]
    if controller is None:
        return
    abandoned = controller.registry.clear()
    if abandoned:
        logger.warning(f"Shutting down with {len(abandoned)} pending captcha(s) abandoned")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log exceptions raised by handlers."""
    logger.error("Unhandled error while processing update", exc_info=context.error)


def init_release_store(settings: Settings) -> DatabaseService | None:
    """
    Open the ban release store if release scheduling is enabled.

    A store that cannot be opened disables release scheduling for this run
    instead of stopping the bot.

    Args:
        settings: Application settings.

    Returns:
        DatabaseService | None: The store, or None when scheduling is off.
    """
    if not settings.ban_release_enabled:
        return None
    try:
        database = init_database(settings.database_path)
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to open ban release store at {settings.database_path}: {e}")
        logger.warning("Ban release scheduling disabled for this session")
        return None
    logger.info(f"Ban release store ready at {settings.database_path}")
    return database


def build_application(settings: Settings) -> Application:  # type: ignore[type-arg]
    """
    Build the bot application with all handlers and jobs registered.

    Args:
        settings: Application settings.

    Returns:
        Application: Ready-to-run application.
    """
    database = init_release_store(settings)

    # Concurrent updates let countdowns, answers and joins interleave;
    # the challenge registry serializes transitions per member
    application = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .concurrent_updates(True)
        .build()
    )
    application.post_init = post_init
    application.post_shutdown = post_shutdown

    application.bot_data[CONTROLLER_KEY] = ChallengeController(  # type: ignore[index]
        registry=ChallengeRegistry(),
        moderation=TelegramModeration(application.bot),
        settings=settings,
        database=database,
    )

    for handler in get_handlers():
        application.add_handler(handler)

    application.add_handler(
        MessageHandler(
            filters.ChatType.PRIVATE & filters.TEXT,
            handle_dm,
        )
    )

    application.add_error_handler(error_handler)

    if database is not None and application.job_queue:
        application.job_queue.run_repeating(
            release_due_bans,
            interval=worker_interval(),
            first=0,
            name=RELEASE_JOB_NAME,
        )
        logger.info(
            f"JobQueue started with ban release job "
            f"(every {int(worker_interval().total_seconds())}s)"
        )

    return application


def main() -> None:
    """
    Initialize and run the bot.

    This function:
    1. Loads configuration from environment
    2. Applies the configured log level
    3. Builds the application (store, controller, handlers, jobs)
    4. Starts polling or the webhook server
    """
    settings = get_settings()

    logging.getLogger().setLevel(settings.log_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    application = build_application(settings)

    logger.info(f"Bot started in {settings.run_mode} mode")

    if settings.run_mode == "webhook":
        application.run_webhook(
            listen=settings.webhook_listen_addr,
            port=settings.webhook_port,
            url_path=settings.webhook_path.lstrip("/"),
            webhook_url=settings.full_webhook_url,
            secret_token=settings.webhook_secret_token,
            allowed_updates=ALLOWED_UPDATES,
        )
    else:
        application.run_polling(allowed_updates=ALLOWED_UPDATES)


if __name__ == "__main__":
    main()
