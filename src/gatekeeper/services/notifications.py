"""
Operator notifications for the gatekeeper bot.

When the captcha log is enabled, every verification result and every
automatic ban release is summarized in the configured log chat. Failures
to deliver are logged as warnings and never interrupt the caller.
"""

import html
import logging
from datetime import datetime

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from gatekeeper.config import Settings
from gatekeeper.constants import (
    BAN_RELEASE_LOG_RESULT,
    BAN_RELEASE_LOG_TITLE,
    CAPTCHA_LOG_FAILURE,
    CAPTCHA_LOG_SUCCESS,
    CAPTCHA_LOG_TITLE,
    sanitize_log_text,
)
from gatekeeper.services.challenge_registry import MemberDisplay

logger = logging.getLogger(__name__)


def format_log_entry(title: str, timestamp: str, member: MemberDisplay, result: str) -> str:
    """
    Render an operator log entry as HTML.

    Args:
        title: Entry heading.
        timestamp: Pre-formatted local timestamp.
        member: Member and chat snapshot.
        result: Result line.

    Returns:
        str: HTML message text.
    """
    lines = [
        title,
        f" ├⏱️ <code>{html.escape(timestamp)}</code>",
        f" ├🙋🏽 {html.escape(member.full_name)}",
    ]
    if member.username:
        lines.append(f" ├👤 @{html.escape(sanitize_log_text(member.username.strip()))}")
    lines.append(f" ├👥 {html.escape(sanitize_log_text(member.chat_label))}")
    lines.append(f" └{result}")
    return "\n".join(lines)


async def _send_log(bot: Bot, settings: Settings, text: str, member: MemberDisplay) -> None:
    if not settings.captcha_log_enabled or settings.captcha_log_chat_id is None:
        return
    try:
        await bot.send_message(
            chat_id=settings.captcha_log_chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )
    except TelegramError as e:
        logger.warning(
            f"Failed to send captcha log for user {member.user_id} "
            f"({member.chat_label}): {e}"
        )


def _local_timestamp(settings: Settings) -> str:
    return datetime.now(settings.tzinfo).strftime("%Y-%m-%d %H:%M:%S")


async def send_captcha_log(
    bot: Bot, settings: Settings, member: MemberDisplay, success: bool
) -> None:
    """Report a terminal challenge result (verified or banned) to the log chat."""
    text = format_log_entry(
        CAPTCHA_LOG_TITLE,
        _local_timestamp(settings),
        member,
        CAPTCHA_LOG_SUCCESS if success else CAPTCHA_LOG_FAILURE,
    )
    await _send_log(bot, settings, text, member)


async def send_release_log(bot: Bot, settings: Settings, member: MemberDisplay) -> None:
    """Report an automatic ban release to the log chat."""
    text = format_log_entry(
        BAN_RELEASE_LOG_TITLE,
        _local_timestamp(settings),
        member,
        BAN_RELEASE_LOG_RESULT,
    )
    await _send_log(bot, settings, text, member)
