"""
Captcha verification handlers for the gatekeeper bot.

This module wires Telegram updates into the challenge controller. When a
user joins a group they are restricted and presented with a captcha image
and choice buttons. They answer either by pressing a button or by typing
the code; a wrong answer costs an attempt and shows a fresh code. Running
out of attempts or time gets them banned.
"""

import logging

from telegram import Update
from telegram.constants import ChatMemberStatus
from telegram.error import TelegramError
from telegram.ext import (
    CallbackQueryHandler,
    ChatMemberHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from gatekeeper.config import get_settings
from gatekeeper.constants import (
    CAPTCHA_ATTEMPTS_EXHAUSTED_MESSAGE,
    CAPTCHA_CALLBACK_PATTERN,
    CAPTCHA_CALLBACK_PREFIX,
    CAPTCHA_NOT_FOR_YOU_MESSAGE,
    CAPTCHA_VERIFIED_MESSAGE,
    CAPTCHA_WRONG_ANSWER_MESSAGE,
)
from gatekeeper.services.challenge_controller import ChallengeController
from gatekeeper.services.challenge_registry import AnswerOutcome
from gatekeeper.services.telegram_utils import format_user_context

logger = logging.getLogger(__name__)

CONTROLLER_KEY = "challenge_controller"

JOINED_FROM = (ChatMemberStatus.LEFT, ChatMemberStatus.BANNED)
JOINED_TO = (
    ChatMemberStatus.MEMBER,
    ChatMemberStatus.RESTRICTED,
    ChatMemberStatus.ADMINISTRATOR,
)


def get_controller(context: ContextTypes.DEFAULT_TYPE) -> ChallengeController:
    """
    Get the challenge controller registered in bot_data.

    Raises:
        RuntimeError: If the application was built without a controller.
    """
    controller = context.bot_data.get(CONTROLLER_KEY)
    if controller is None:
        raise RuntimeError("Challenge controller not registered in bot_data")
    return controller


async def _delete_service_message(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, message_id: int
) -> None:
    try:
        await context.bot.delete_message(chat_id=chat_id, message_id=message_id)
    except TelegramError as e:
        logger.warning(f"Failed to delete service message {message_id} in chat {chat_id}: {e}")


async def new_member_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Handle "new chat members" service messages.

    Deletes the join message if configured and issues a challenge to every
    human member in it.

    Args:
        update: Telegram update containing the new member info.
        context: Bot context with bot_data and helper methods.
    """
    message = update.message
    if not message or not message.new_chat_members:
        logger.debug("No message or no new chat members, skipping")
        return

    settings = get_settings()
    if settings.delete_join_message:
        await _delete_service_message(context, message.chat_id, message.message_id)

    logger.info(
        f"Processing new members in chat {message.chat_id}: "
        f"{len(message.new_chat_members)} member(s)"
    )

    controller = get_controller(context)
    for new_member in message.new_chat_members:
        await controller.issue(message.chat, new_member)


async def chat_member_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Handle chat member status changes.

    A transition from left/banned to a present status is treated as a join.
    Joins that also produced a service message are de-duplicated by the
    registry.

    Args:
        update: Telegram update containing the ChatMemberUpdated.
        context: Bot context with bot_data.
    """
    member_update = update.chat_member
    if not member_update:
        return

    old_status = member_update.old_chat_member.status
    new_status = member_update.new_chat_member.status
    if old_status not in JOINED_FROM or new_status not in JOINED_TO:
        return

    controller = get_controller(context)
    await controller.issue(member_update.chat, member_update.new_chat_member.user)


async def left_member_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Delete "member left" service messages if configured."""
    message = update.message
    if not message or not message.left_chat_member:
        return

    if get_settings().delete_left_message:
        await _delete_service_message(context, message.chat_id, message.message_id)


async def captcha_text_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Treat group text from a member with a pending challenge as an answer.

    The message is deleted from the chat and evaluated. Text from members
    without a pending challenge is left for other handlers.

    Args:
        update: Telegram update containing the message.
        context: Bot context with bot_data.
    """
    message = update.message
    if not message or not message.from_user or message.text is None:
        return

    user = message.from_user
    if user.is_bot:
        return

    controller = get_controller(context)
    key = (message.chat_id, user.id)
    if not controller.registry.contains(key):
        return

    try:
        await message.delete()
    except TelegramError as e:
        logger.warning(f"Failed to delete captcha answer message in chat {message.chat_id}: {e}")

    outcome = await controller.evaluate(key, message.text)
    logger.info(
        f"Captcha text answer from {format_user_context(user)} in chat {message.chat_id}: "
        f"{outcome.value}"
    )


async def captcha_callback_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Handle captcha choice button presses.

    Only the member the challenge message belongs to can answer it; anyone
    else gets an alert and the registry is not touched.

    Args:
        update: Telegram update containing the callback query.
        context: Bot context with bot_data.
    """
    query = update.callback_query
    if not query or not query.data or not query.data.startswith(CAPTCHA_CALLBACK_PREFIX):
        return

    message = query.message
    if message is None:
        return

    controller = get_controller(context)
    key = (message.chat.id, query.from_user.id)
    selected = query.data[len(CAPTCHA_CALLBACK_PREFIX):]

    challenge = controller.registry.get(key)
    if challenge is None or challenge.challenge_message_id != message.message_id:
        await query.answer(CAPTCHA_NOT_FOR_YOU_MESSAGE, show_alert=True)
        return

    outcome = await controller.evaluate(key, selected)

    if outcome is AnswerOutcome.VERIFIED:
        await query.answer(CAPTCHA_VERIFIED_MESSAGE)
    elif outcome is AnswerOutcome.WRONG:
        await query.answer(CAPTCHA_WRONG_ANSWER_MESSAGE)
    elif outcome is AnswerOutcome.EXHAUSTED:
        await query.answer(CAPTCHA_ATTEMPTS_EXHAUSTED_MESSAGE, show_alert=True)
    else:
        await query.answer(CAPTCHA_NOT_FOR_YOU_MESSAGE, show_alert=True)


def get_handlers() -> list:
    """
    Return list of handlers to register for captcha verification.

    Returns:
        list: Join, chat member, left member, callback query and text handlers.
    """
    return [
        MessageHandler(
            filters.StatusUpdate.NEW_CHAT_MEMBERS,
            new_member_handler,
        ),
        MessageHandler(
            filters.StatusUpdate.LEFT_CHAT_MEMBER,
            left_member_handler,
        ),
        ChatMemberHandler(
            chat_member_handler,
            ChatMemberHandler.CHAT_MEMBER,
        ),
        CallbackQueryHandler(
            captcha_callback_handler,
            pattern=CAPTCHA_CALLBACK_PATTERN,
        ),
        MessageHandler(
            filters.TEXT & filters.ChatType.GROUPS,
            captcha_text_handler,
        ),
    ]
