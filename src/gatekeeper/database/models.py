"""
Database models for the gatekeeper bot.

This module defines SQLModel schemas for persisting bot data to SQLite.
Only scheduled ban releases are persisted; pending challenges live in
memory and do not survive a restart.
"""

from sqlmodel import Field, SQLModel


class BanReleaseJob(SQLModel, table=True):
    """
    A ban issued by the captcha flow that should be lifted later.

    One row per (chat_id, user_id). Re-banning the same member before the
    release replaces the row, giving them a fresh timer. Display fields are
    captured at ban time so the release notification never has to look up
    a member who may have left Telegram's directory.

    Attributes:
        chat_id: Telegram chat ID the member was banned from.
        user_id: Telegram user ID of the banned member.
        release_at: Unix timestamp (seconds) after which the ban is lifted.
        user_name: Member's full name at ban time.
        user_username: Member's username at ban time, if any.
        chat_title: Chat title at ban time, if any.
        chat_username: Chat public username at ban time, if any.
    """

    __tablename__ = "ban_release_jobs"

    chat_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)
    release_at: int = Field(index=True)
    user_name: str = Field(default="-")
    user_username: str | None = Field(default=None)
    chat_title: str | None = Field(default=None)
    chat_username: str | None = Field(default=None)
