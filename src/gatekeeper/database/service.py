"""
Database service for the gatekeeper bot.

This module provides the DatabaseService class for all database operations,
plus module-level functions for initialization and access. Uses SQLModel
with SQLite backend for persistence.

The only persisted state is the ban release schedule. The captcha ban path
upserts jobs and the release worker fetches and deletes them; each key has
a single writer at a time, so SQLite's primary key (upsert on conflict)
and WAL journal are all the serialization the store needs.
"""

import logging
from pathlib import Path

from sqlalchemy import delete, event, inspect, text
from sqlalchemy.dialects.sqlite import insert
from sqlmodel import Session, SQLModel, create_engine, select

from gatekeeper.database.models import BanReleaseJob

logger = logging.getLogger(__name__)

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1

DISPLAY_COLUMNS = ("user_name", "user_username", "chat_title", "chat_username")


def is_storable_id(value: int) -> bool:
    """Check whether a Telegram identifier fits in a SQLite INTEGER column."""
    return SQLITE_INT_MIN <= value <= SQLITE_INT_MAX


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    """Apply journal and durability pragmas to every new connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=3000")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


class DatabaseService:
    """
    Service class for database operations.

    Handles the ban release schedule: upsert, due lookup and deletion.
    Includes a small migration step for databases created by older versions.
    """

    def __init__(self, database_path: str):
        """
        Initialize database connection and create tables.

        Args:
            database_path: Path to SQLite database file.
                Parent directories are created if they don't exist.
        """
        path = Path(database_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_engine(f"sqlite:///{database_path}")
        event.listen(self._engine, "connect", _configure_sqlite)
        SQLModel.metadata.create_all(self._engine)
        self._migrate()

    def _migrate(self) -> None:
        """Add display columns missing from older schemas and back-fill names."""
        existing = {column["name"] for column in inspect(self._engine).get_columns("ban_release_jobs")}
        with self._engine.begin() as connection:
            for column in DISPLAY_COLUMNS:
                if column not in existing:
                    connection.execute(text(f"ALTER TABLE ban_release_jobs ADD COLUMN {column} TEXT"))
                    logger.info(f"Added column {column} to ban_release_jobs")
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS ix_ban_release_jobs_release_at "
                    "ON ban_release_jobs (release_at)"
                )
            )
            connection.execute(
                text("UPDATE ban_release_jobs SET user_name = '-' WHERE user_name IS NULL")
            )

    def upsert_release_job(
        self,
        chat_id: int,
        user_id: int,
        release_at: int,
        user_name: str = "-",
        user_username: str | None = None,
        chat_title: str | None = None,
        chat_username: str | None = None,
    ) -> None:
        """
        Create or replace the release job for a member.

        Overwriting is intentional: a member banned again before release
        gets a fresh timer.

        Args:
            chat_id: Telegram chat ID.
            user_id: Telegram user ID.
            release_at: Unix timestamp after which the ban should be lifted.
            user_name: Member's full name at ban time.
            user_username: Member's username at ban time.
            chat_title: Chat title at ban time.
            chat_username: Chat username at ban time.
        """
        values = {
            "chat_id": chat_id,
            "user_id": user_id,
            "release_at": release_at,
            "user_name": user_name,
            "user_username": user_username,
            "chat_title": chat_title,
            "chat_username": chat_username,
        }
        statement = insert(BanReleaseJob).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["chat_id", "user_id"],
            set_={
                "release_at": statement.excluded.release_at,
                "user_name": statement.excluded.user_name,
                "user_username": statement.excluded.user_username,
                "chat_title": statement.excluded.chat_title,
                "chat_username": statement.excluded.chat_username,
            },
        )
        with self._engine.begin() as connection:
            connection.execute(statement)

    def fetch_due_release_jobs(self, now_ts: int) -> list[BanReleaseJob]:
        """
        Find all release jobs that are due.

        Args:
            now_ts: Current unix timestamp.

        Returns:
            list[BanReleaseJob]: Jobs with release_at <= now_ts, oldest first.
        """
        with Session(self._engine) as session:
            statement = (
                select(BanReleaseJob)
                .where(BanReleaseJob.release_at <= now_ts)
                .order_by(BanReleaseJob.release_at, BanReleaseJob.chat_id, BanReleaseJob.user_id)
            )
            records = session.exec(statement).all()
            # Detach from session before returning
            return [record for record in records]

    def get_release_job(self, chat_id: int, user_id: int) -> BanReleaseJob | None:
        with Session(self._engine) as session:
            return session.get(BanReleaseJob, (chat_id, user_id))

    def delete_release_job(
        self, chat_id: int, user_id: int, release_at: int | None = None
    ) -> bool:
        """
        Remove a release job. Deleting a job that does not exist is a no-op.

        Args:
            chat_id: Telegram chat ID.
            user_id: Telegram user ID.
            release_at: If given, only delete the job while it still has this
                release time; a job replaced by a newer ban is kept.

        Returns:
            bool: True if a row was deleted.
        """
        statement = delete(BanReleaseJob).where(
            BanReleaseJob.chat_id == chat_id,
            BanReleaseJob.user_id == user_id,
        )
        if release_at is not None:
            statement = statement.where(BanReleaseJob.release_at == release_at)
        with self._engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount > 0


# Module-level singleton for database service
_db_service: DatabaseService | None = None


def init_database(database_path: str) -> DatabaseService:
    """
    Initialize the database service singleton.

    Must be called once at application startup before any database operations.

    Args:
        database_path: Path to SQLite database file.

    Returns:
        DatabaseService: Initialized database service instance.
    """
    global _db_service
    _db_service = DatabaseService(database_path)
    return _db_service


def get_database() -> DatabaseService:
    """
    Get the database service singleton.

    Returns:
        DatabaseService: Database service instance.

    Raises:
        RuntimeError: If init_database() hasn't been called.
    """
    if _db_service is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db_service


def reset_database() -> None:
    """
    Reset database service singleton (for testing).

    Clears the singleton so a new database can be initialized.
    Properly disposes of the engine to close all connections.
    """
    global _db_service
    if _db_service is not None:
        _db_service._engine.dispose()
    _db_service = None
