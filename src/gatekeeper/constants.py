"""
Application constants for the gatekeeper bot.

This module contains shared constants used across multiple bot modules,
including permissions, message templates, and text sanitizing utilities.
"""

import unicodedata

from telegram import ChatPermissions

# Permissions applied while a member has a pending challenge (effectively mutes them)
RESTRICTED_PERMISSIONS = ChatPermissions(
    can_send_messages=False,
    can_send_audios=False,
    can_send_documents=False,
    can_send_photos=False,
    can_send_videos=False,
    can_send_video_notes=False,
    can_send_voice_notes=False,
    can_send_polls=False,
    can_send_other_messages=False,
    can_add_web_page_previews=False,
    can_change_info=False,
    can_invite_users=False,
    can_pin_messages=False,
    can_manage_topics=False,
)

# Callback data prefix for challenge choice buttons ("captcha:<choice>")
CAPTCHA_CALLBACK_PREFIX = "captcha:"
CAPTCHA_CALLBACK_PATTERN = r"^captcha:"

# Characters used for challenge codes and decoys
CAPTCHA_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Number of choice buttons per keyboard row
CAPTCHA_KEYBOARD_ROW_SIZE = 3

# Zero-width and bidi formatting characters that must never reach the logs
INVISIBLE_CHARACTERS = frozenset(
    chr(code)
    for code in (
        0x00AD, 0x061C, 0x180E, 0x200B, 0x200C, 0x200D, 0x2060, 0x2061,
        0x2062, 0x2063, 0x2064, 0x2066, 0x2067, 0x2068, 0x2069, 0x202A,
        0x202B, 0x202C, 0x202D, 0x202E, 0xFEFF,
    )
)


def sanitize_log_text(text: str) -> str:
    """
    Strip control and invisible formatting characters from user-supplied text.

    Names and chat titles are attacker-controlled; newlines or bidi overrides
    in them would otherwise forge or scramble log lines.

    Args:
        text: Raw text.

    Returns:
        str: Text without control or invisible characters.
    """
    return "".join(
        ch
        for ch in text
        if ch not in INVISIBLE_CHARACTERS and unicodedata.category(ch) != "Cc"
    )


CAPTCHA_QUOTES = (
    "Tunjukkan kamu bukan bot.",
    "Manusia sejati teliti membaca.",
    "Pelan-pelan saja, yang penting benar.",
    "Satu langkah kecil sebelum ikut berdiskusi.",
    "Robot tidak suka huruf yang miring.",
    "Perhatikan baik-baik setiap karakternya.",
)

# Challenge caption (HTML). Refreshed on every countdown tick and wrong answer.
CAPTCHA_CAPTION = (
    "🖐🏼 Hai, {user_mention}\n\n"
    "🙏🏼 <b>Silakan selesaikan captcha ini.</b>\n"
    "💁🏻‍♂️ Pilih jawaban yang benar dari tombol yang tersedia.\n\n"
    "⏳ Dalam <code>{remaining_seconds}</code> detik.\n"
    "🎯 Kesempatan: <code>{attempts_remaining}</code>/<code>{attempts_total}</code>\n\n"
    "🗒 <i>{quote}</i>"
)

CAPTCHA_NOT_FOR_YOU_MESSAGE = "🚫 Captcha sudah selesai atau bukan untukmu."
CAPTCHA_WRONG_ANSWER_MESSAGE = "❌ Jawaban salah, coba lagi."
CAPTCHA_ATTEMPTS_EXHAUSTED_MESSAGE = "❌ Kesempatan habis. Kamu dikeluarkan."
CAPTCHA_VERIFIED_MESSAGE = "✅ Captcha benar. Terima kasih!"

# Operator log entries (HTML)
CAPTCHA_LOG_TITLE = "🪵 Captcha Log"
CAPTCHA_LOG_SUCCESS = "✅ sukses"
CAPTCHA_LOG_FAILURE = "🚫 gagal"
BAN_RELEASE_LOG_TITLE = "🔓 Ban Release"
BAN_RELEASE_LOG_RESULT = "✅ ban dicabut"

# Private chat commands
START_MESSAGE = (
    "🤖 <b>Gatekeeper Bot</b>\n"
    "Tambahkan bot ini ke grup sebagai admin untuk memverifikasi anggota baru."
)
PING_PENDING_MESSAGE = "🏓 <b>Pong!</b>\n⏰ Response time: <code>...</code> ms"
PING_RESULT_MESSAGE = "🏓 <b>Pong!</b>\n⏰ Response time: <code>{elapsed_ms}</code> ms"
VERSION_MESSAGE = (
    "🧩 <b>Gatekeeper Bot</b>\n"
    "📦 Version: <code>{version}</code>\n"
    "⚙️ Mode: <code>{run_mode}</code>\n"
    "🪵 Log: <code>{log_level}</code>\n"
    "🕒 Timezone: <code>{timezone}</code>"
)
VERSION_COMMANDS = ("ver", "versi", "version")
