"""
Challenge artifact helpers for the gatekeeper bot.

This module produces everything a challenge message is made of: the code
the member must reproduce, the shuffled choice set of decoys around it,
the rendered image, the HTML caption, and the inline choice keyboard.
Nothing here touches the Telegram API or the challenge registry.
"""

import random

from captcha.image import ImageCaptcha
from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.helpers import mention_html

from gatekeeper.constants import (
    CAPTCHA_ALPHABET,
    CAPTCHA_CALLBACK_PREFIX,
    CAPTCHA_CAPTION,
    CAPTCHA_KEYBOARD_ROW_SIZE,
    CAPTCHA_QUOTES,
    sanitize_log_text,
)

_rng = random.SystemRandom()

_VARIATION = chr(0xFE0F)
_KEYCAP = _VARIATION + chr(0x20E3)
_LETTER_A = chr(0x1F170) + _VARIATION
_LETTER_B = chr(0x1F171) + _VARIATION
_LETTERS_AB = chr(0x1F18E)


def generate_code(length: int) -> str:
    """
    Generate a random challenge code.

    Args:
        length: Number of characters.

    Returns:
        str: Upper-case alphanumeric code.
    """
    return "".join(_rng.choice(CAPTCHA_ALPHABET) for _ in range(length))


def generate_choices(code: str, count: int) -> list[str]:
    """
    Build the shuffled choice set for a code.

    Decoys have the same length as the code and are resampled until the
    set reaches ``count`` entries, rejecting any candidate that equals an
    existing entry case-insensitively. The correct code appears exactly once.

    Args:
        code: The correct answer.
        count: Desired number of choices (at least 2).

    Returns:
        list[str]: Shuffled choices including ``code``.
    """
    target = max(count, 2)
    choices = [code]
    seen = {code.casefold()}
    while len(choices) < target:
        candidate = generate_code(len(code))
        if candidate.casefold() in seen:
            continue
        seen.add(candidate.casefold())
        choices.append(candidate)
    _rng.shuffle(choices)
    return choices


def render_captcha_image(code: str, width: int, height: int) -> bytes:
    """
    Render a code as a noisy PNG image.

    Args:
        code: Text to draw.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        bytes: PNG image data.
    """
    image = ImageCaptcha(width=width, height=height)
    return image.generate(code).getvalue()


def captcha_caption(
    user_id: int,
    first_name: str,
    remaining_seconds: int,
    attempts_remaining: int,
    attempts_total: int,
) -> str:
    """Render the HTML caption shown under the challenge image."""
    quote = _rng.choice(CAPTCHA_QUOTES)
    return CAPTCHA_CAPTION.format(
        user_mention=mention_html(user_id, sanitize_log_text(first_name.strip()) or str(user_id)),
        remaining_seconds=max(remaining_seconds, 0),
        attempts_remaining=attempts_remaining,
        attempts_total=attempts_total,
        quote=quote,
    )


def option_to_display(option: str) -> str:
    """
    Convert digits and the letters A/B of a choice into emoji keycaps.

    An "AB" pair (any case) becomes a single AB emoji.
    """
    out = []
    i = 0
    while i < len(option):
        ch = option[i]
        if ch in "Aa":
            if i + 1 < len(option) and option[i + 1] in "Bb":
                out.append(_LETTERS_AB)
                i += 2
                continue
            out.append(_LETTER_A)
        elif ch in "Bb":
            out.append(_LETTER_B)
        elif ch.isascii() and ch.isdigit():
            out.append(ch + _KEYCAP)
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def build_captcha_keyboard(choices: list[str], digits_to_emoji: bool) -> InlineKeyboardMarkup:
    """
    Build the inline keyboard of choice buttons, three per row.

    Args:
        choices: Ordered choice set.
        digits_to_emoji: Whether to render digits and A/B as emoji.

    Returns:
        InlineKeyboardMarkup: Keyboard whose callback data is ``captcha:<choice>``.
    """
    rows = []
    for start in range(0, len(choices), CAPTCHA_KEYBOARD_ROW_SIZE):
        row = []
        for choice in choices[start:start + CAPTCHA_KEYBOARD_ROW_SIZE]:
            label = option_to_display(choice) if digits_to_emoji else choice
            row.append(
                InlineKeyboardButton(label, callback_data=f"{CAPTCHA_CALLBACK_PREFIX}{choice}")
            )
        rows.append(row)
    return InlineKeyboardMarkup(rows)
