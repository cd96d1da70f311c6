"""
Ban release worker for the gatekeeper bot.

A repeating JobQueue job that lifts captcha bans whose release time has
passed. Each run fetches the due jobs oldest first, unbans each member and
deletes the job only after the unban succeeded. A failed unban leaves the
job in place so the next run retries it.

The pipeline is at-least-once: a crash between a successful unban and the
delete replays the unban on the next run, which is harmless because
unbanning a member who is not banned succeeds.
"""

import logging
import time
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from gatekeeper.config import Settings, get_settings
from gatekeeper.database.models import BanReleaseJob
from gatekeeper.database.service import DatabaseService, get_database
from gatekeeper.services.challenge_registry import MemberDisplay
from gatekeeper.services.moderation import TelegramModeration
from gatekeeper.services.notifications import send_release_log

logger = logging.getLogger(__name__)

RELEASE_JOB_NAME = "ban_release_job"


def worker_interval() -> timedelta:
    """Interval between release worker runs."""
    return timedelta(seconds=60)


def member_display_from_job(job: BanReleaseJob) -> MemberDisplay:
    """Rebuild the display snapshot stored with a release job."""
    return MemberDisplay(
        user_id=job.user_id,
        first_name=job.user_name or "-",
        username=job.user_username,
        chat_title=job.chat_title,
        chat_username=job.chat_username,
    )


async def process_due_releases(
    db: DatabaseService,
    moderation: TelegramModeration,
    settings: Settings,
    now_ts: int,
) -> int:
    """
    Lift every ban that is due at ``now_ts``.

    Args:
        db: Release job store.
        moderation: Remote moderation capability.
        settings: Application settings (for notifications).
        now_ts: Current unix timestamp.

    Returns:
        int: Number of bans released and removed from the store.
    """
    try:
        due_jobs = db.fetch_due_release_jobs(now_ts)
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch due ban release jobs: {e}")
        return 0

    if not due_jobs:
        logger.debug("No ban releases due")
        return 0

    logger.info(f"Processing {len(due_jobs)} due ban release(s)")

    released = 0
    for job in due_jobs:
        try:
            await moderation.unban_member(job.chat_id, job.user_id)
        except TelegramError as e:
            logger.warning(
                f"Failed to release ban for user {job.user_id} in chat {job.chat_id}, "
                f"will retry: {e}"
            )
            continue

        try:
            deleted = db.delete_release_job(job.chat_id, job.user_id, release_at=job.release_at)
        except SQLAlchemyError as e:
            logger.error(
                f"Released user {job.user_id} in chat {job.chat_id} "
                f"but failed to delete job: {e}"
            )
            continue

        if not deleted:
            logger.info(
                f"User {job.user_id} in chat {job.chat_id} was banned again during release, "
                "keeping the new job"
            )

        released += 1
        member = member_display_from_job(job)
        logger.info(
            f"Released ban for user {job.user_id} ({member.display}) "
            f"in chat {job.chat_id} ({member.chat_label})"
        )
        await send_release_log(moderation.bot, settings, member)

    return released


async def release_due_bans(context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    JobQueue callback lifting captcha bans whose release time has passed.

    Args:
        context: Telegram job context.
    """
    settings = get_settings()
    db = get_database()
    moderation = TelegramModeration(context.bot)

    await process_due_releases(db, moderation, settings, int(time.time()))
