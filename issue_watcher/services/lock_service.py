"""
Lease-based named locks stored in the database.

A lock row is free when its lease has lapsed, so a crashed holder is
reclaimed once its TTL passes; there is no heartbeat. The TTL therefore has
to exceed the longest thing the holder does under the lock.

Usage:
    locks = LockService()
    with locks.hold("llm_worker", ttl_seconds=390) as acquired:
        if acquired:
            ...
"""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from issue_watcher.db import DatabaseManager, db
from issue_watcher.logging import get_logger
from issue_watcher.models import Lock
from issue_watcher.timeutils import EPOCH, Clock, utcnow

logger = get_logger("lock")


class LockService:
    def __init__(self, database: DatabaseManager = db, clock: Clock = utcnow):
        self.database = database
        self.clock = clock

    def acquire(self, name: str, ttl_seconds: float, owner: Optional[str] = None) -> bool:
        """
        Take the lease on ``name`` for ``ttl_seconds``.

        Returns:
            True when the lock was absent or its lease had expired, False when
            another holder's lease is still live.
        """
        now = self.clock()
        expires = now + timedelta(seconds=ttl_seconds)

        with self.database.session() as session:
            reclaim = (
                update(Lock)
                .where(Lock.name == name, Lock.lease_expires_at <= now)
                .values(lease_expires_at=expires, owner=owner, acquired_at=now)
                .execution_options(synchronize_session=False)
            )
            if session.execute(reclaim).rowcount == 1:
                logger.debug("lock_acquired", name=name, owner=owner, ttl_seconds=ttl_seconds)
                return True

            if session.scalar(select(Lock.id).where(Lock.name == name)) is not None:
                logger.debug("lock_busy", name=name)
                return False

            try:
                with session.begin_nested():
                    session.add(Lock(name=name, lease_expires_at=expires, owner=owner, acquired_at=now))
            except IntegrityError:
                logger.debug("lock_busy", name=name)
                return False

        logger.debug("lock_acquired", name=name, owner=owner, ttl_seconds=ttl_seconds)
        return True

    def release(self, name: str) -> None:
        """Clear the lease unconditionally."""
        with self.database.session() as session:
            session.execute(
                update(Lock)
                .where(Lock.name == name)
                .values(lease_expires_at=EPOCH, owner=None)
                .execution_options(synchronize_session=False)
            )
        logger.debug("lock_released", name=name)

    @contextmanager
    def hold(
        self, name: str, ttl_seconds: float, owner: Optional[str] = None
    ) -> Generator[bool, None, None]:
        """Yield whether the lock was taken; release it on every exit path if it was."""
        acquired = self.acquire(name, ttl_seconds, owner=owner)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(name)
