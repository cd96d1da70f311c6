"""
Challenge lifecycle controller for the gatekeeper bot.

This module drives each member through ABSENT -> PENDING -> VERIFIED or
BANNED. A join restricts the member, posts a challenge image with choice
buttons, registers the PendingChallenge, and starts a countdown task. An
answer either verifies the member, spends an attempt (with a fresh code),
or, when attempts run out, bans them. The countdown bans on expiry.

Every terminal transition starts by removing the record from the
registry; whichever path gets the record back performs the side effects,
every other path sees the key absent and does nothing. Remote failures
are logged and never leave a challenge stuck in PENDING.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from telegram import Chat, User
from telegram.error import TelegramError

from gatekeeper.config import Settings
from gatekeeper.constants import RESTRICTED_PERMISSIONS
from gatekeeper.database.service import DatabaseService, is_storable_id
from gatekeeper.services.captcha import (
    build_captcha_keyboard,
    captcha_caption,
    generate_choices,
    generate_code,
    render_captcha_image,
)
from gatekeeper.services.challenge_registry import (
    AnswerOutcome,
    ChallengeKey,
    ChallengeRegistry,
    PendingChallenge,
)
from gatekeeper.services.moderation import TelegramModeration
from gatekeeper.services.notifications import send_captcha_log
from gatekeeper.services.telegram_utils import build_member_display

logger = logging.getLogger(__name__)


class ChallengeController:
    """
    Issues challenges, evaluates answers and performs terminal transitions.

    Args:
        registry: Shared challenge registry.
        moderation: Remote moderation capability.
        settings: Application settings (read at issuance).
        database: Release job store, or None when release scheduling is off.
        clock: Returns the current unix time.
        sleep: Awaitable sleep used by countdown tasks.
    """

    def __init__(
        self,
        registry: ChallengeRegistry,
        moderation: TelegramModeration,
        settings: Settings,
        database: DatabaseService | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.moderation = moderation
        self.settings = settings
        self.database = database
        self._clock = clock
        self._sleep = sleep
        self._countdowns: set[asyncio.Task] = set()
        self._edit_locks: dict[ChallengeKey, asyncio.Lock] = {}

    @property
    def countdown_tasks(self) -> set[asyncio.Task]:
        return set(self._countdowns)

    async def issue(self, chat: Chat, user: User) -> bool:
        """
        Start a challenge for a member who just joined.

        No-op for bots and for members who already have a pending challenge,
        so duplicate join events are harmless.

        Args:
            chat: Chat the member joined.
            user: Joining member.

        Returns:
            bool: True if a new challenge was registered.
        """
        if user.is_bot:
            return False

        key: ChallengeKey = (chat.id, user.id)
        if not self.registry.reserve(key):
            logger.debug(f"User {user.id} already has a pending captcha in chat {chat.id}")
            return False

        try:
            return await self._issue_reserved(key, chat, user)
        finally:
            self.registry.release(key)

    async def _issue_reserved(self, key: ChallengeKey, chat: Chat, user: User) -> bool:
        member = build_member_display(user, chat)
        settings = self.settings

        try:
            await self.moderation.restrict_member(chat.id, user.id, RESTRICTED_PERMISSIONS)
        except TelegramError as e:
            logger.error(
                f"Failed to restrict user {user.id} ({member.display}) "
                f"in chat {chat.id} ({member.chat_label}): {e}"
            )

        if self.registry.contains(key):
            logger.debug(f"User {user.id} got a captcha in chat {chat.id} while restricting")
            return False

        code = generate_code(settings.captcha_length)
        choices = generate_choices(code, settings.captcha_option_count)
        image = render_captcha_image(code, settings.captcha_width, settings.captcha_height)
        caption = captcha_caption(
            user.id,
            member.first_name,
            settings.captcha_timeout_seconds,
            settings.captcha_attempts,
            settings.captcha_attempts,
        )
        keyboard = build_captcha_keyboard(choices, settings.captcha_option_digits_to_emoji)

        try:
            message_id = await self.moderation.send_challenge(chat.id, caption, image, keyboard)
        except TelegramError as e:
            logger.error(
                f"Failed to send captcha to user {user.id} in chat {chat.id} "
                f"({member.chat_label}): {e}"
            )
            # Another challenge for this member keeps them restricted
            if not self.registry.contains(key):
                await self._restore_permissions(key, member.display)
            return False

        challenge = PendingChallenge(
            expected_answer=code,
            challenge_message_id=message_id,
            choice_set=choices,
            attempts_remaining=settings.captcha_attempts,
            attempts_total=settings.captcha_attempts,
            seconds_remaining=settings.captcha_timeout_seconds,
            member=member,
            code_length=settings.captcha_length,
            choice_count=settings.captcha_option_count,
            image_size=(settings.captcha_width, settings.captcha_height),
        )

        if not self.registry.insert(key, challenge):
            # A concurrent join event registered first; drop our duplicate message
            await self._delete_challenge_message(key, message_id)
            return False

        logger.info(
            f"Sent captcha to user {user.id} ({member.display}) in chat {chat.id} "
            f"({member.chat_label}), timeout in {settings.captcha_timeout_seconds}s"
        )
        self._start_countdown(key, message_id)
        return True

    def _start_countdown(self, key: ChallengeKey, message_id: int) -> None:
        task = asyncio.create_task(
            self.run_countdown(key, message_id),
            name=f"captcha_countdown_{key[0]}_{key[1]}",
        )
        self._countdowns.add(task)
        task.add_done_callback(self._countdowns.discard)

    async def run_countdown(self, key: ChallengeKey, message_id: int) -> None:
        """
        Count a challenge down, refreshing its caption, and ban on expiry.

        Exits silently as soon as the challenge is gone (verified, banned or
        replaced by a newer challenge for the same key).

        Args:
            key: Challenge key.
            message_id: Challenge message this countdown belongs to.
        """
        step = max(self.settings.captcha_caption_update_seconds, 1)
        while True:
            await self._sleep(step)
            challenge = self.registry.tick(key, step, message_id)
            if challenge is None:
                return
            if challenge.seconds_remaining <= 0:
                break
            await self._refresh_challenge(key, message_id)

        challenge = self.registry.remove(key, message_id)
        if challenge is None:
            return
        await self._ban(key, challenge, "captcha timeout")

    async def evaluate(self, key: ChallengeKey, answer: str) -> AnswerOutcome:
        """
        Evaluate an answer submitted as text or via a choice button.

        Args:
            key: (chat_id, user_id) of the answering member.
            answer: Submitted text or selected choice.

        Returns:
            AnswerOutcome: NO_CHALLENGE if nothing is pending for the key
                (the caller should treat the input normally), otherwise the
                result of the answer.
        """
        result = self.registry.submit_answer(key, answer, self._regenerate)
        challenge = result.challenge

        if result.outcome is AnswerOutcome.VERIFIED:
            await self._verify(key, challenge)
        elif result.outcome is AnswerOutcome.EXHAUSTED:
            await self._ban(key, challenge, "captcha attempts exceeded")
        elif result.outcome is AnswerOutcome.WRONG:
            logger.info(
                f"Wrong captcha answer from user {key[1]} ({challenge.member.display}) "
                f"in chat {key[0]}, {challenge.attempts_remaining}/{challenge.attempts_total} left"
            )
            width, height = challenge.image_size
            image = render_captcha_image(challenge.expected_answer, width, height)
            await self._refresh_challenge(
                key, challenge.challenge_message_id, (challenge.expected_answer, image)
            )

        return result.outcome

    def _regenerate(self, challenge: PendingChallenge) -> tuple[str, list[str]]:
        code = generate_code(challenge.code_length)
        return code, generate_choices(code, challenge.choice_count)

    async def _refresh_challenge(
        self,
        key: ChallengeKey,
        message_id: int,
        rendered: tuple[str, bytes] | None = None,
    ) -> None:
        """
        Edit the challenge message to match the registry's current state.

        Edits for one key are serialized and each one reads the state only
        once it holds the key's edit lock, so a slower edit can never land
        with choices older than the ones already shown.

        Args:
            key: Challenge key.
            message_id: Challenge message to edit.
            rendered: (code, image) to swap in a new photo; skipped if the
                code has been replaced again in the meantime.
        """
        lock = self._edit_locks.setdefault(key, asyncio.Lock())
        async with lock:
            challenge = self.registry.get(key)
            if challenge is None or challenge.challenge_message_id != message_id:
                return
            image = None
            if rendered is not None:
                code, image = rendered
                if code != challenge.expected_answer:
                    return

            caption = captcha_caption(
                key[1],
                challenge.member.first_name,
                challenge.seconds_remaining,
                challenge.attempts_remaining,
                challenge.attempts_total,
            )
            keyboard = build_captcha_keyboard(
                challenge.choice_set, self.settings.captcha_option_digits_to_emoji
            )
            try:
                await self.moderation.edit_challenge(key[0], message_id, caption, keyboard, image)
            except TelegramError as e:
                logger.debug(f"Failed to refresh captcha for user {key[1]} in chat {key[0]}: {e}")

    async def _verify(self, key: ChallengeKey, challenge: PendingChallenge) -> None:
        chat_id, user_id = key
        member = challenge.member
        self._edit_locks.pop(key, None)
        await self._delete_challenge_message(key, challenge.challenge_message_id)
        await self._restore_permissions(key, member.display)
        logger.info(
            f"User {user_id} ({member.display}) verified captcha in chat {chat_id} "
            f"({member.chat_label})"
        )
        await send_captcha_log(self.moderation.bot, self.settings, member, True)

    async def _restore_permissions(self, key: ChallengeKey, display: str) -> None:
        chat_id, user_id = key
        try:
            await self.moderation.restore_member(chat_id, user_id)
        except TelegramError as e:
            logger.error(
                f"Failed to restore permissions for user {user_id} ({display}) "
                f"in chat {chat_id}: {e}"
            )

    async def _ban(self, key: ChallengeKey, challenge: PendingChallenge, reason: str) -> None:
        """
        BANNED transition for a challenge already removed from the registry.

        A failed ban is logged and not retried; the member then stays in the
        chat unrestricted. Message cleanup and notification still happen.
        """
        chat_id, user_id = key
        member = challenge.member
        self._edit_locks.pop(key, None)
        try:
            await self.moderation.ban_member(chat_id, user_id)
        except TelegramError as e:
            logger.error(
                f"Failed to ban user {user_id} ({member.display}) in chat {chat_id} "
                f"({member.chat_label}) after {reason}: {e}"
            )
        else:
            self._schedule_release(key, challenge)

        await self._delete_challenge_message(key, challenge.challenge_message_id)
        logger.info(
            f"User {user_id} ({member.display}) banned from chat {chat_id} "
            f"({member.chat_label}): {reason}"
        )
        await send_captcha_log(self.moderation.bot, self.settings, member, False)

    def _schedule_release(self, key: ChallengeKey, challenge: PendingChallenge) -> None:
        if not self.settings.ban_release_enabled or self.database is None:
            return

        chat_id, user_id = key
        if not (is_storable_id(chat_id) and is_storable_id(user_id)):
            logger.warning(
                f"Not storing ban release job for user {user_id} in chat {chat_id}: "
                "identifier out of range"
            )
            return

        member = challenge.member
        release_at = int(self._clock()) + self.settings.ban_release_after_seconds
        try:
            self.database.upsert_release_job(
                chat_id=chat_id,
                user_id=user_id,
                release_at=release_at,
                user_name=member.full_name or "-",
                user_username=member.username,
                chat_title=member.chat_title,
                chat_username=member.chat_username,
            )
        except SQLAlchemyError as e:
            logger.warning(
                f"Failed to store ban release job for user {user_id} in chat {chat_id}: {e}"
            )
            return
        logger.info(f"Scheduled ban release for user {user_id} in chat {chat_id} at {release_at}")

    async def _delete_challenge_message(self, key: ChallengeKey, message_id: int) -> None:
        try:
            await self.moderation.delete_message(key[0], message_id)
        except TelegramError as e:
            logger.warning(
                f"Failed to delete captcha message {message_id} in chat {key[0]}: {e}"
            )
