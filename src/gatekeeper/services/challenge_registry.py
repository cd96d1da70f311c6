"""
In-memory registry of pending challenges.

The registry maps (chat_id, user_id) to the member's PendingChallenge and is
the single source of truth for "is this member currently challenged".
Every operation is one short critical section under a single lock, and
callers only ever receive copies, so nothing outside the registry can
mutate a challenge without going through it. ``remove`` (and the removing
branches of ``submit_answer``) are the serialization point between the
countdown task and concurrent answers: whoever gets the record back owns
the terminal transition.
"""

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from gatekeeper.constants import sanitize_log_text

ChallengeKey = tuple[int, int]


@dataclass(frozen=True)
class MemberDisplay:
    """
    Presentable snapshot of a member and chat, captured at issuance.

    Later logging and notifications read from here so they never need to
    look up a member who may already have been banned or left.
    """

    user_id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    chat_title: str | None = None
    chat_username: str | None = None

    @property
    def full_name(self) -> str:
        first = sanitize_log_text(self.first_name.strip())
        last = sanitize_log_text((self.last_name or "").strip())
        return f"{first} {last}" if last else first

    @property
    def display(self) -> str:
        username = sanitize_log_text(self.username or "-")
        return f"{self.full_name} @{username}"

    @property
    def chat_label(self) -> str:
        if self.chat_username and self.chat_title:
            return f"@{self.chat_username.strip()} : {self.chat_title.strip()}"
        if self.chat_username:
            return f"@{self.chat_username.strip()}"
        if self.chat_title:
            return self.chat_title.strip()
        return "unknown"


@dataclass
class PendingChallenge:
    """
    Mutable state of one in-flight challenge.

    Attributes:
        expected_answer: Current correct code; replaced after a wrong answer.
        challenge_message_id: Message carrying the challenge image.
        choice_set: Shuffled decoys plus the correct answer.
        attempts_remaining: Wrong answers left; never increases.
        attempts_total: Attempts granted at issuance.
        seconds_remaining: Countdown value shown in the caption.
        member: Display snapshot of the member and chat.
        code_length: Code length fixed at issuance.
        choice_count: Choice set size fixed at issuance.
        image_size: Rendered image (width, height) fixed at issuance.
    """

    expected_answer: str
    challenge_message_id: int
    choice_set: list[str]
    attempts_remaining: int
    attempts_total: int
    seconds_remaining: int
    member: MemberDisplay
    code_length: int
    choice_count: int
    image_size: tuple[int, int] = (320, 100)

    def snapshot(self) -> "PendingChallenge":
        return replace(self, choice_set=list(self.choice_set))


class AnswerOutcome(Enum):
    NO_CHALLENGE = "no_challenge"
    WRONG = "wrong"
    VERIFIED = "verified"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AnswerResult:
    """Outcome of an answer plus a copy of the challenge it applied to."""

    outcome: AnswerOutcome
    challenge: PendingChallenge | None = None


# Produces (new_code, new_choice_set) for a challenge that stays pending
Regenerator = Callable[[PendingChallenge], tuple[str, list[str]]]


class ChallengeRegistry:
    """Lock-protected mapping from ChallengeKey to PendingChallenge."""

    def __init__(self) -> None:
        self._challenges: dict[ChallengeKey, PendingChallenge] = {}
        self._issuing: set[ChallengeKey] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def reserve(self, key: ChallengeKey) -> bool:
        """
        Claim a key for issuance.

        Only one issuer may hold a key at a time, and not while a challenge
        is pending for it. The holder must call ``release`` when done.

        Returns:
            bool: True if the key was claimed.
        """
        with self._lock:
            if key in self._challenges or key in self._issuing:
                return False
            self._issuing.add(key)
            return True

    def release(self, key: ChallengeKey) -> None:
        with self._lock:
            self._issuing.discard(key)

    def insert(self, key: ChallengeKey, challenge: PendingChallenge) -> bool:
        """
        Register a challenge unless one already exists for the key.

        Returns:
            bool: True if inserted, False if a challenge was already present.
        """
        with self._lock:
            if key in self._challenges:
                return False
            self._challenges[key] = challenge.snapshot()
            return True

    def contains(self, key: ChallengeKey) -> bool:
        with self._lock:
            return key in self._challenges

    def get(self, key: ChallengeKey) -> PendingChallenge | None:
        with self._lock:
            challenge = self._challenges.get(key)
            return challenge.snapshot() if challenge else None

    def _current(self, key: ChallengeKey, message_id: int | None) -> PendingChallenge | None:
        challenge = self._challenges.get(key)
        if challenge is None:
            return None
        if message_id is not None and challenge.challenge_message_id != message_id:
            return None
        return challenge

    def remove(self, key: ChallengeKey, message_id: int | None = None) -> PendingChallenge | None:
        """
        Remove and return the challenge for a key.

        Only the caller that receives a record may perform the terminal
        transition; every other caller gets None.

        Args:
            key: Challenge key.
            message_id: If given, only remove the challenge posted as this
                message (a newer challenge for the same key is left alone).
        """
        with self._lock:
            if self._current(key, message_id) is None:
                return None
            return self._challenges.pop(key)

    def tick(
        self, key: ChallengeKey, seconds: int, message_id: int | None = None
    ) -> PendingChallenge | None:
        """
        Advance the countdown of a pending challenge.

        Returns:
            PendingChallenge | None: Updated copy, or None if the key is gone
                (or now belongs to a different challenge message).
        """
        with self._lock:
            challenge = self._current(key, message_id)
            if challenge is None:
                return None
            challenge.seconds_remaining = max(challenge.seconds_remaining - seconds, 0)
            return challenge.snapshot()

    def submit_answer(
        self, key: ChallengeKey, answer: str, regenerate: Regenerator
    ) -> AnswerResult:
        """
        Evaluate an answer atomically.

        A case-insensitive match removes the challenge (VERIFIED). A mismatch
        spends one attempt; when none are left the challenge is removed
        (EXHAUSTED), otherwise ``regenerate`` supplies a fresh code and
        choice set and the challenge stays pending (WRONG).

        Args:
            key: Challenge key.
            answer: Submitted text or selected choice.
            regenerate: Called under the lock for a challenge that stays pending.

        Returns:
            AnswerResult: Outcome and a copy of the affected challenge.
        """
        submitted = answer.strip().casefold()
        with self._lock:
            challenge = self._challenges.get(key)
            if challenge is None:
                return AnswerResult(AnswerOutcome.NO_CHALLENGE)

            if submitted == challenge.expected_answer.casefold():
                del self._challenges[key]
                return AnswerResult(AnswerOutcome.VERIFIED, challenge)

            challenge.attempts_remaining = max(challenge.attempts_remaining - 1, 0)
            if challenge.attempts_remaining == 0:
                del self._challenges[key]
                return AnswerResult(AnswerOutcome.EXHAUSTED, challenge)

            code, choices = regenerate(challenge)
            challenge.expected_answer = code
            challenge.choice_set = list(choices)
            return AnswerResult(AnswerOutcome.WRONG, challenge.snapshot())

    def clear(self) -> list[ChallengeKey]:
        """Drop every pending challenge and return the keys that were removed."""
        with self._lock:
            keys = list(self._challenges)
            self._challenges.clear()
            self._issuing.clear()
            return keys
