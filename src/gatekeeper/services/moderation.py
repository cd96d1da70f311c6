"""
Moderation capability used by the challenge flow and the release worker.

A thin adapter over the python-telegram-bot ``Bot`` exposing exactly the
remote operations the admission flow needs. Methods raise
``telegram.error.TelegramError`` on failure; callers decide whether a
failure is logged or retried.
"""

from telegram import Bot, ChatPermissions, InlineKeyboardMarkup, InputMediaPhoto
from telegram.constants import ParseMode
from telegram.error import TelegramError


class PermissionsUnavailableError(TelegramError):
    """Raised when a chat does not report its default member permissions."""


class TelegramModeration:
    """Remote moderation and challenge-message operations for one bot."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def restrict_member(
        self, chat_id: int, user_id: int, permissions: ChatPermissions
    ) -> None:
        await self.bot.restrict_chat_member(
            chat_id=chat_id,
            user_id=user_id,
            permissions=permissions,
        )

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id)

    async def unban_member(self, chat_id: int, user_id: int) -> None:
        """
        Lift a ban.

        ``only_if_banned`` makes this idempotent: a member who is not
        currently banned is left untouched and the call still succeeds.
        """
        await self.bot.unban_chat_member(
            chat_id=chat_id,
            user_id=user_id,
            only_if_banned=True,
        )

    async def get_default_permissions(self, chat_id: int) -> ChatPermissions:
        """
        Fetch the chat's default member permissions.

        Raises:
            PermissionsUnavailableError: If the chat reports no permissions.
        """
        chat = await self.bot.get_chat(chat_id)
        if chat.permissions is None:
            raise PermissionsUnavailableError(f"Chat {chat_id} permissions unavailable")
        return chat.permissions

    async def restore_member(self, chat_id: int, user_id: int) -> None:
        """
        Remove restrictions from a member by applying the chat's default permissions.

        This restores the member to normal status in the chat.
        """
        permissions = await self.get_default_permissions(chat_id)
        await self.restrict_member(chat_id, user_id, permissions)

    async def send_challenge(
        self,
        chat_id: int,
        caption: str,
        image: bytes,
        keyboard: InlineKeyboardMarkup,
    ) -> int:
        """
        Post the challenge photo with its caption and choice keyboard.

        Returns:
            int: Message ID of the challenge message.
        """
        message = await self.bot.send_photo(
            chat_id=chat_id,
            photo=image,
            caption=caption,
            parse_mode=ParseMode.HTML,
            reply_markup=keyboard,
        )
        return message.message_id

    async def edit_challenge(
        self,
        chat_id: int,
        message_id: int,
        caption: str,
        keyboard: InlineKeyboardMarkup,
        image: bytes | None = None,
    ) -> None:
        """Refresh the challenge caption and keyboard, replacing the photo if given."""
        if image is None:
            await self.bot.edit_message_caption(
                chat_id=chat_id,
                message_id=message_id,
                caption=caption,
                parse_mode=ParseMode.HTML,
                reply_markup=keyboard,
            )
            return
        await self.bot.edit_message_media(
            chat_id=chat_id,
            message_id=message_id,
            media=InputMediaPhoto(media=image, caption=caption, parse_mode=ParseMode.HTML),
            reply_markup=keyboard,
        )

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
