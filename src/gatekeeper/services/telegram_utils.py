"""
Shared Telegram utility functions.

This module provides common helper functions for working with
Telegram's API objects across different handlers and services.
"""

from telegram import Chat, User

from gatekeeper.constants import sanitize_log_text
from gatekeeper.services.challenge_registry import MemberDisplay


def chat_context(chat: Chat) -> tuple[str | None, str | None]:
    """
    Get sanitized title and public username of a chat.

    The username is only reported for chats that have a title (groups and
    channels), never for private chats.

    Args:
        chat: Telegram Chat object.

    Returns:
        tuple: (title, username), each None when absent.
    """
    title = sanitize_log_text(chat.title.strip()) if chat.title else None
    username = None
    if title is not None and chat.username:
        username = sanitize_log_text(chat.username.strip())
    return title, username


def build_member_display(user: User, chat: Chat) -> MemberDisplay:
    """
    Capture a display snapshot of a member and the chat they joined.

    Args:
        user: Joining Telegram user.
        chat: Chat the user joined.

    Returns:
        MemberDisplay: Snapshot used for captions, logs and notifications.
    """
    title, chat_username = chat_context(chat)
    return MemberDisplay(
        user_id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        chat_title=title,
        chat_username=chat_username,
    )


def format_user_context(user: User) -> str:
    """
    Format a user as "id:name @username" for log lines.

    Args:
        user: Telegram User object.

    Returns:
        str: Sanitized user context.
    """
    name = sanitize_log_text(user.full_name.strip())
    if user.username:
        return f"{user.id}:{name} @{sanitize_log_text(user.username)}"
    return f"{user.id}:{name}"


def is_command(text: str, command: str) -> bool:
    """
    Check whether text starts with a bot command, allowing the @botname suffix.

    Args:
        text: Message text.
        command: Command name without the slash.

    Returns:
        bool: True if the first word is /command or /command@anything.
    """
    words = text.strip().split()
    if not words:
        return False
    first = words[0].lower()
    return first.split("@", 1)[0] == f"/{command}"
