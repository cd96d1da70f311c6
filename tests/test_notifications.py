from unittest.mock import AsyncMock

import pytest
from telegram.constants import ParseMode
from telegram.error import TelegramError

from gatekeeper.config import Settings
from gatekeeper.services.challenge_registry import MemberDisplay
from gatekeeper.services.notifications import (
    format_log_entry,
    send_captcha_log,
    send_release_log,
)


@pytest.fixture
def member():
    return MemberDisplay(
        user_id=42,
        first_name="Budi <b>",
        username="budi",
        chat_title="Python",
        chat_username="pyid",
    )


@pytest.fixture
def log_settings():
    return Settings(
        _env_file=None,
        telegram_bot_token="test_token_123",
        captcha_log_enabled=True,
        captcha_log_chat_id=-100555,
    )


class TestFormatLogEntry:
    def test_layout(self, member):
        text = format_log_entry("🪵 Captcha Log", "2024-01-01 10:00:00", member, "✅ sukses")

        assert text.splitlines() == [
            "🪵 Captcha Log",
            " ├⏱️ <code>2024-01-01 10:00:00</code>",
            " ├🙋🏽 Budi &lt;b&gt;",
            " ├👤 @budi",
            " ├👥 @pyid : Python",
            " └✅ sukses",
        ]

    def test_without_username(self):
        member = MemberDisplay(user_id=42, first_name="Budi")

        lines = format_log_entry("T", "ts", member, "R").splitlines()

        assert not any("👤" in line for line in lines)
        assert " ├👥 unknown" in lines


class TestSendCaptchaLog:
    async def test_success_entry(self, member, log_settings):
        bot = AsyncMock()

        await send_captcha_log(bot, log_settings, member, True)

        bot.send_message.assert_awaited_once()
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == -100555
        assert kwargs["parse_mode"] == ParseMode.HTML
        assert "Captcha Log" in kwargs["text"]
        assert "sukses" in kwargs["text"]

    async def test_failure_entry(self, member, log_settings):
        bot = AsyncMock()

        await send_captcha_log(bot, log_settings, member, False)

        assert "gagal" in bot.send_message.await_args.kwargs["text"]

    async def test_disabled(self, member):
        bot = AsyncMock()
        settings = Settings(_env_file=None, telegram_bot_token="test_token_123")

        await send_captcha_log(bot, settings, member, True)

        bot.send_message.assert_not_awaited()

    async def test_send_failure_is_swallowed(self, member, log_settings):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramError("Forbidden")

        await send_release_log(bot, log_settings, member)

        bot.send_message.assert_awaited_once()
