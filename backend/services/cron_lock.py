"""
Distributed lock for scheduled jobs, backed by the cron_locks table.

Acquire deletes any expired row for the job and inserts a new one; the
job_name primary key turns a concurrent holder into an IntegrityError.
Release deletes only the row carrying this holder's lock_id.
"""

import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
import structlog

from database import get_db_context
from models import CronLock, utc_now

logger = structlog.get_logger()


class DistributedLock:
    """
    Named lock with a TTL.

    Usage:
        lock = DistributedLock("process_movie_scenes", ttl_seconds=300)
        if not lock.acquire():
            return skipped
        try:
            ...
        finally:
            lock.release()
    """

    def __init__(self, job_name: str, ttl_seconds: int, session_factory=None):
        self.job_name = job_name
        self.ttl_seconds = ttl_seconds
        self.session_factory = session_factory
        self.lock_id = f"{job_name}-{uuid.uuid4().hex}"
        self.acquired = False

    def acquire(self) -> bool:
        """
        Try to take the lock.

        Returns:
            True when this instance now holds the lock, False when another
            unexpired holder exists
        """
        now = utc_now()
        with get_db_context(self.session_factory) as db:
            db.execute(
                delete(CronLock).where(
                    CronLock.job_name == self.job_name,
                    CronLock.expires_at < now,
                )
            )
            db.commit()

            db.add(CronLock(
                job_name=self.job_name,
                lock_id=self.lock_id,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("cron_lock_held", job_name=self.job_name)
                return False

        self.acquired = True
        logger.info("cron_lock_acquired", job_name=self.job_name, lock_id=self.lock_id, ttl_seconds=self.ttl_seconds)
        return True

    def release(self) -> None:
        """Delete this holder's row; a lock re-acquired by someone else after expiry is left alone."""
        with get_db_context(self.session_factory) as db:
            result = db.execute(delete(CronLock).where(CronLock.lock_id == self.lock_id))
            db.commit()

        self.acquired = False
        if result.rowcount:
            logger.info("cron_lock_released", job_name=self.job_name, lock_id=self.lock_id)
        else:
            logger.warning("cron_lock_release_missing", job_name=self.job_name, lock_id=self.lock_id)


def get_lock_holder(job_name: str, session_factory=None) -> Optional[str]:
    """Return the lock_id currently holding job_name, if any."""
    with get_db_context(session_factory) as db:
        lock = db.get(CronLock, job_name)
        return lock.lock_id if lock else None
