"""
Tests for challenge artifact helpers.

Covers code and choice generation, emoji rendering of choices, the choice
keyboard layout, the caption, and the rendered image.
"""

import pytest

from gatekeeper.constants import CAPTCHA_ALPHABET
from gatekeeper.services.captcha import (
    build_captcha_keyboard,
    captcha_caption,
    generate_choices,
    generate_code,
    option_to_display,
    render_captcha_image,
)

KEYCAP = chr(0xFE0F) + chr(0x20E3)


class TestGenerateCode:
    @pytest.mark.parametrize("length", [4, 6, 12])
    def test_length_and_alphabet(self, length):
        code = generate_code(length)

        assert len(code) == length
        assert all(ch in CAPTCHA_ALPHABET for ch in code)


class TestGenerateChoices:
    def test_contains_code_exactly_once(self):
        for _ in range(50):
            choices = generate_choices("AB12CD", 6)

            assert len(choices) == 6
            assert choices.count("AB12CD") == 1

    def test_choices_unique_case_insensitively(self):
        for _ in range(50):
            choices = generate_choices("ab12cd", 12)
            folded = [choice.casefold() for choice in choices]

            assert len(set(folded)) == 12
            assert folded.count("ab12cd") == 1

    def test_decoys_share_code_length(self):
        choices = generate_choices("XYZW", 5)
        assert all(len(choice) == 4 for choice in choices)

    def test_minimum_two_choices(self):
        choices = generate_choices("AB12CD", 1)

        assert len(choices) == 2
        assert "AB12CD" in choices


class TestOptionToDisplay:
    def test_digits_become_keycaps(self):
        assert option_to_display("12") == "1" + KEYCAP + "2" + KEYCAP

    def test_letter_a_and_b(self):
        assert option_to_display("A") == chr(0x1F170) + chr(0xFE0F)
        assert option_to_display("b") == chr(0x1F171) + chr(0xFE0F)

    def test_ab_pair_is_one_emoji(self):
        assert option_to_display("AB") == chr(0x1F18E)
        assert option_to_display("aB") == chr(0x1F18E)

    def test_other_letters_unchanged(self):
        assert option_to_display("XZ") == "XZ"

    def test_mixed(self):
        assert option_to_display("XAB7") == "X" + chr(0x1F18E) + "7" + KEYCAP


class TestBuildCaptchaKeyboard:
    def test_rows_of_three(self):
        choices = ["AAAA", "BBBB", "CCCC", "DDDD", "EEEE", "FFFF", "GGGG"]

        keyboard = build_captcha_keyboard(choices, digits_to_emoji=False)

        rows = keyboard.inline_keyboard
        assert [len(row) for row in rows] == [3, 3, 1]

    def test_callback_data_carries_raw_choice(self):
        keyboard = build_captcha_keyboard(["A1", "ZZ"], digits_to_emoji=True)
        buttons = keyboard.inline_keyboard[0]

        assert buttons[0].callback_data == "captcha:A1"
        assert buttons[0].text == chr(0x1F170) + chr(0xFE0F) + "1" + KEYCAP
        assert buttons[1].callback_data == "captcha:ZZ"
        assert buttons[1].text == "ZZ"

    def test_plain_labels(self):
        keyboard = build_captcha_keyboard(["A1"], digits_to_emoji=False)
        assert keyboard.inline_keyboard[0][0].text == "A1"


class TestCaptchaCaption:
    def test_caption_contents(self):
        caption = captcha_caption(42, "Budi", 110, 2, 3)

        assert 'href="tg://user?id=42"' in caption
        assert "Budi" in caption
        assert "<code>110</code>" in caption
        assert "<code>2</code>/<code>3</code>" in caption

    def test_name_is_escaped(self):
        caption = captcha_caption(42, "<b>Evil</b>", 60, 3, 3)

        assert "<b>Evil</b>" not in caption
        assert "&lt;b&gt;Evil&lt;/b&gt;" in caption

    def test_negative_remaining_shown_as_zero(self):
        assert "<code>0</code> detik" in captcha_caption(42, "Budi", -5, 1, 3)


class TestRenderCaptchaImage:
    def test_png_bytes(self):
        image = render_captcha_image("AB12CD", 320, 100)

        assert isinstance(image, bytes)
        assert image.startswith(b"\x89PNG")
