from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import ChatPermissions, InlineKeyboardMarkup, InputMediaPhoto
from telegram.constants import ParseMode

from gatekeeper.services.moderation import PermissionsUnavailableError, TelegramModeration


@pytest.fixture
def mock_bot():
    return AsyncMock()


@pytest.fixture
def moderation(mock_bot):
    return TelegramModeration(mock_bot)


class TestTelegramModeration:
    async def test_unban_is_only_if_banned(self, moderation, mock_bot):
        await moderation.unban_member(-100123, 42)
        await moderation.unban_member(-100123, 42)

        assert mock_bot.unban_chat_member.await_count == 2
        mock_bot.unban_chat_member.assert_awaited_with(
            chat_id=-100123, user_id=42, only_if_banned=True
        )

    async def test_ban(self, moderation, mock_bot):
        await moderation.ban_member(-100123, 42)
        mock_bot.ban_chat_member.assert_awaited_once_with(chat_id=-100123, user_id=42)

    async def test_restore_applies_chat_defaults(self, moderation, mock_bot):
        defaults = ChatPermissions(can_send_messages=True)
        chat = MagicMock()
        chat.permissions = defaults
        mock_bot.get_chat.return_value = chat

        await moderation.restore_member(-100123, 42)

        mock_bot.restrict_chat_member.assert_awaited_once_with(
            chat_id=-100123, user_id=42, permissions=defaults
        )

    async def test_missing_default_permissions(self, moderation, mock_bot):
        chat = MagicMock()
        chat.permissions = None
        mock_bot.get_chat.return_value = chat

        with pytest.raises(PermissionsUnavailableError):
            await moderation.restore_member(-100123, 42)

        mock_bot.restrict_chat_member.assert_not_awaited()

    async def test_send_challenge_returns_message_id(self, moderation, mock_bot):
        sent = MagicMock()
        sent.message_id = 500
        mock_bot.send_photo.return_value = sent
        keyboard = InlineKeyboardMarkup([])

        message_id = await moderation.send_challenge(-100123, "caption", b"png", keyboard)

        assert message_id == 500
        kwargs = mock_bot.send_photo.await_args.kwargs
        assert kwargs["photo"] == b"png"
        assert kwargs["parse_mode"] == ParseMode.HTML
        assert kwargs["reply_markup"] is keyboard

    async def test_edit_caption_only(self, moderation, mock_bot):
        await moderation.edit_challenge(-100123, 500, "caption", InlineKeyboardMarkup([]))

        mock_bot.edit_message_caption.assert_awaited_once()
        mock_bot.edit_message_media.assert_not_awaited()

    async def test_edit_with_new_image(self, moderation, mock_bot):
        await moderation.edit_challenge(
            -100123, 500, "caption", InlineKeyboardMarkup([]), image=b"png"
        )

        mock_bot.edit_message_media.assert_awaited_once()
        media = mock_bot.edit_message_media.await_args.kwargs["media"]
        assert isinstance(media, InputMediaPhoto)
        assert media.caption == "caption"
        mock_bot.edit_message_caption.assert_not_awaited()

    async def test_delete_message(self, moderation, mock_bot):
        await moderation.delete_message(-100123, 500)
        mock_bot.delete_message.assert_awaited_once_with(chat_id=-100123, message_id=500)
