"""
DM (Direct Message) handler for the gatekeeper bot.

This module answers the few commands the bot understands in private chats:
/start describes the bot, /ping measures the response round-trip, and
/version (/ver, /versi) reports the running configuration.
"""

import logging
import time
from importlib.metadata import PackageNotFoundError, version

from telegram import Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from gatekeeper.config import get_settings
from gatekeeper.constants import (
    PING_PENDING_MESSAGE,
    PING_RESULT_MESSAGE,
    START_MESSAGE,
    VERSION_COMMANDS,
    VERSION_MESSAGE,
)
from gatekeeper.services.telegram_utils import format_user_context, is_command

logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version, or "unknown" when running from a source tree."""
    try:
        return version("gatekeeper-bot")
    except PackageNotFoundError:
        return "unknown"


async def handle_dm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle private text messages to the bot.

    Unknown text is ignored.

    Args:
        update: Telegram update containing the message.
        context: Bot context with helper methods.
    """
    # Skip if no message or sender
    if not update.message or not update.message.from_user or not update.message.text:
        return

    # Only handle private chats
    if update.effective_chat and update.effective_chat.type != "private":
        return

    text = update.message.text.strip()
    user = update.message.from_user

    if is_command(text, "start"):
        await update.message.reply_text(START_MESSAGE, parse_mode=ParseMode.HTML)
        logger.info(f"/start from {format_user_context(user)}")
        return

    if is_command(text, "ping"):
        started = time.monotonic()
        sent = await update.message.reply_text(PING_PENDING_MESSAGE, parse_mode=ParseMode.HTML)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        try:
            await sent.edit_text(
                PING_RESULT_MESSAGE.format(elapsed_ms=elapsed_ms),
                parse_mode=ParseMode.HTML,
            )
        except TelegramError as e:
            logger.warning(f"Failed to edit ping response for user {user.id}: {e}")
        return

    if any(is_command(text, command) for command in VERSION_COMMANDS):
        settings = get_settings()
        try:
            await update.message.reply_text(
                VERSION_MESSAGE.format(
                    version=get_version(),
                    run_mode=settings.run_mode,
                    log_level=settings.log_level.lower(),
                    timezone=settings.timezone,
                ),
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
        except TelegramError as e:
            logger.warning(f"Failed to send version response to user {user.id}: {e}")
        return
