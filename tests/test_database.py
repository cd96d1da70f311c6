"""
Tests for the ban release job store.
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from gatekeeper.database.service import (
    DatabaseService,
    get_database,
    init_database,
    is_storable_id,
    reset_database,
)


@pytest.fixture
def temp_db():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        db = init_database(str(db_path))
        yield db
        reset_database()


class TestSingleton:
    def test_get_database_before_init(self):
        reset_database()
        with pytest.raises(RuntimeError):
            get_database()

    def test_get_database_after_init(self, temp_db):
        assert get_database() is temp_db

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "dir" / "test.db"
            init_database(str(db_path))
            assert db_path.exists()
            reset_database()


class TestUpsertReleaseJob:
    def test_insert_job(self, temp_db):
        temp_db.upsert_release_job(
            -100123, 42, 1_000, user_name="Budi", user_username="budi", chat_title="Python"
        )

        job = temp_db.get_release_job(-100123, 42)
        assert job.release_at == 1_000
        assert job.user_name == "Budi"
        assert job.user_username == "budi"
        assert job.chat_title == "Python"
        assert job.chat_username is None

    def test_rebanned_member_gets_fresh_timer(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000, user_name="Old")
        temp_db.upsert_release_job(-100123, 42, 5_000, user_name="New")

        job = temp_db.get_release_job(-100123, 42)
        assert job.release_at == 5_000
        assert job.user_name == "New"
        assert len(temp_db.fetch_due_release_jobs(10_000)) == 1

    def test_default_user_name(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000)
        assert temp_db.get_release_job(-100123, 42).user_name == "-"

    def test_large_identifiers(self, temp_db):
        chat_id = -1_009_999_999_999
        user_id = 2**62
        temp_db.upsert_release_job(chat_id, user_id, 1_000)

        assert temp_db.get_release_job(chat_id, user_id) is not None


class TestFetchDueReleaseJobs:
    def test_boundary_is_inclusive(self, temp_db):
        temp_db.upsert_release_job(-100123, 1, 1_000)
        temp_db.upsert_release_job(-100123, 2, 1_001)

        due = temp_db.fetch_due_release_jobs(1_000)

        assert [job.user_id for job in due] == [1]

    def test_ordered_oldest_first(self, temp_db):
        temp_db.upsert_release_job(-100123, 3, 3_000)
        temp_db.upsert_release_job(-100123, 1, 1_000)
        temp_db.upsert_release_job(-100999, 2, 2_000)
        temp_db.upsert_release_job(-100123, 4, 2_000)

        due = temp_db.fetch_due_release_jobs(5_000)

        assert [(job.chat_id, job.user_id) for job in due] == [
            (-100123, 1),
            (-100999, 2),
            (-100123, 4),
            (-100123, 3),
        ]

    def test_nothing_due(self, temp_db):
        temp_db.upsert_release_job(-100123, 1, 9_000)
        assert temp_db.fetch_due_release_jobs(1_000) == []


class TestDeleteReleaseJob:
    def test_delete_job(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000)

        temp_db.delete_release_job(-100123, 42)

        assert temp_db.get_release_job(-100123, 42) is None

    def test_delete_missing_job_is_noop(self, temp_db):
        temp_db.delete_release_job(-100123, 42)
        assert temp_db.fetch_due_release_jobs(10_000) == []

    def test_delete_matching_release_time(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000)

        assert temp_db.delete_release_job(-100123, 42, release_at=1_000) is True
        assert temp_db.get_release_job(-100123, 42) is None

    def test_delete_keeps_rescheduled_job(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000)
        temp_db.upsert_release_job(-100123, 42, 9_000)

        assert temp_db.delete_release_job(-100123, 42, release_at=1_000) is False
        assert temp_db.get_release_job(-100123, 42).release_at == 9_000

    def test_delete_only_targets_one_key(self, temp_db):
        temp_db.upsert_release_job(-100123, 42, 1_000)
        temp_db.upsert_release_job(-100123, 43, 1_000)

        temp_db.delete_release_job(-100123, 42)

        assert [job.user_id for job in temp_db.fetch_due_release_jobs(10_000)] == [43]


class TestMigration:
    def test_legacy_schema_is_upgraded(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "legacy.db"
            connection = sqlite3.connect(db_path)
            connection.execute(
                "CREATE TABLE ban_release_jobs ("
                "chat_id INTEGER NOT NULL, user_id INTEGER NOT NULL, "
                "release_at INTEGER NOT NULL, PRIMARY KEY (chat_id, user_id))"
            )
            connection.execute("INSERT INTO ban_release_jobs VALUES (-100123, 42, 1000)")
            connection.commit()
            connection.close()

            db = DatabaseService(str(db_path))
            job = db.get_release_job(-100123, 42)

            assert job.release_at == 1000
            assert job.user_name == "-"
            assert job.chat_title is None
            db._engine.dispose()

    def test_reopening_existing_store_keeps_jobs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = str(Path(tmpdir) / "test.db")
            first = DatabaseService(db_path)
            first.upsert_release_job(-100123, 42, 1_000)
            first._engine.dispose()

            second = DatabaseService(db_path)
            assert second.get_release_job(-100123, 42) is not None
            second._engine.dispose()


class TestIsStorableId:
    def test_bounds(self):
        assert is_storable_id(2**63 - 1)
        assert is_storable_id(-(2**63))
        assert not is_storable_id(2**63)
        assert not is_storable_id(-(2**63) - 1)
