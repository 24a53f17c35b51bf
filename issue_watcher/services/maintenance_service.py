"""Periodic housekeeping run from the beat schedule."""

from datetime import timedelta
from typing import Optional

from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import ACTION_TICK
from issue_watcher.db import DatabaseManager, db
from issue_watcher.logging import get_logger
from issue_watcher.repositories import TaskRepository
from issue_watcher.timeutils import Clock, utcnow

from .rate_limiter import RateLimiter
from .scheduler import Scheduler

logger = get_logger("maintenance")


class MaintenanceService:
    def __init__(
        self,
        scheduler: Scheduler,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.scheduler = scheduler
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock

    def vacuum_tasks(self) -> int:
        """Delete done, errored and canceled tasks past the retention window."""
        cutoff = self.clock() - timedelta(hours=self.settings.task_retention_hours)
        with self.database.session() as session:
            deleted = TaskRepository(session).vacuum(cutoff)
        logger.info("tasks_vacuumed", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    def vacuum_rate_limits(self) -> int:
        return RateLimiter(self.database, self.settings, self.clock).vacuum()

    def requeue_stale_running(self) -> int:
        """
        Put tasks back in the queue when they have sat in ``running`` longer
        than a worker lease, which only happens when their tick died.
        """
        cutoff = self.clock() - timedelta(seconds=self.settings.lock_ttl_seconds)
        with self.database.session() as session:
            requeued = TaskRepository(session).requeue_stale_running(cutoff)
        if requeued:
            logger.warning("stale_running_tasks_requeued", count=requeued)
            self.scheduler.run_after(0, ACTION_TICK)
        return requeued
