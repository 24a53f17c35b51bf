"""
Analysis task repository: the durable queue.

Selection is FIFO by creation time with a per-owner admission filter so a
single user with thousands of queued issues cannot starve everyone else.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update

from issue_watcher.constants import (
    ACTIVE_TASK_STATUSES,
    DEFAULT_TASK_PRIORITY,
    QUEUE_WINDOW_MAX,
    QUEUE_WINDOW_MIN,
    TASK_CANCELED,
    TASK_DONE,
    TASK_ERROR,
    TASK_QUEUED,
    TASK_RUNNING,
    TERMINAL_TASK_STATUSES,
)
from issue_watcher.logging import queue_logger as logger
from issue_watcher.models import AnalysisTask, Report
from issue_watcher.timeutils import utcnow

from .base import BaseRepository


class TaskRepository(BaseRepository[AnalysisTask]):
    model = AnalysisTask

    def enqueue_for_report(
        self,
        report: Report,
        issues: Iterable[Dict[str, Any]],
        estimated_tokens: int,
        priority: int = DEFAULT_TASK_PRIORITY,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Create one queued task per issue that has no task yet.

        Issues already present among the report's tasks (in any status) are
        skipped, so enqueuing the same page twice is harmless.

        Returns:
            Number of tasks created
        """
        existing = set(
            self.session.scalars(
                select(AnalysisTask.issue_id).where(AnalysisTask.report_id == report.id)
            )
        )
        now = now or utcnow()
        created = 0
        for issue in issues:
            if issue["id"] in existing:
                continue
            existing.add(issue["id"])
            self.session.add(
                AnalysisTask(
                    report_id=report.id,
                    owner_user_id=report.user_id,
                    keyword=report.keyword,
                    issue_id=issue["id"],
                    issue=dict(issue),
                    estimated_tokens=estimated_tokens,
                    status=TASK_QUEUED,
                    priority=priority,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            created += 1
        self.session.flush()
        if created:
            logger.info("tasks_enqueued", report_id=report.id, count=created)
        return created

    def select_queued(
        self,
        limit: int,
        per_owner_max_running: int,
        per_owner_max_in_batch: int,
    ) -> List[AnalysisTask]:
        """
        Pick up to ``limit`` queued tasks, oldest first.

        A candidate is skipped when its owner's running count plus tasks
        already picked in this call reaches ``per_owner_max_running``, or when
        this call already picked ``per_owner_max_in_batch`` of that owner's
        tasks.
        """
        if limit <= 0:
            return []
        window = min(QUEUE_WINDOW_MAX, max(limit * 2, QUEUE_WINDOW_MIN))
        candidates = self.session.scalars(
            select(AnalysisTask)
            .where(AnalysisTask.status == TASK_QUEUED)
            .order_by(AnalysisTask.created_at, AnalysisTask.id)
            .limit(window)
        ).all()

        running_by_owner: Dict[int, int] = {}
        picked_by_owner: Dict[int, int] = {}
        selected: List[AnalysisTask] = []

        for task in candidates:
            owner = task.owner_user_id
            if owner not in running_by_owner:
                running_by_owner[owner] = self.count_by_owner(owner, TASK_RUNNING)
                picked_by_owner[owner] = 0

            picked = picked_by_owner[owner]
            if running_by_owner[owner] + picked >= per_owner_max_running:
                continue
            if picked >= per_owner_max_in_batch:
                continue

            selected.append(task)
            picked_by_owner[owner] = picked + 1
            if len(selected) >= limit:
                break

        return selected

    def count_by_owner(self, owner_user_id: int, status: str) -> int:
        stmt = select(func.count(AnalysisTask.id)).where(
            AnalysisTask.owner_user_id == owner_user_id, AnalysisTask.status == status
        )
        return self.session.scalar(stmt) or 0

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def _set_status(self, ids: List[int], status: str, from_statuses: Iterable[str], **values) -> int:
        if not ids:
            return 0
        stmt = (
            update(AnalysisTask)
            .where(AnalysisTask.id.in_(ids), AnalysisTask.status.in_(list(from_statuses)))
            .values(status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def mark_running(self, ids: List[int]) -> int:
        return self._set_status(ids, TASK_RUNNING, [TASK_QUEUED])

    def mark_done(self, ids: List[int]) -> int:
        return self._set_status(ids, TASK_DONE, [TASK_RUNNING], error=None)

    def mark_canceled(self, ids: List[int]) -> int:
        return self._set_status(ids, TASK_CANCELED, [TASK_QUEUED, TASK_RUNNING])

    def mark_requeue_or_error(self, task_id: int, attempts: int, error: str, max_attempts: int) -> str:
        """
        Record a failed attempt.

        The task goes back to ``queued`` while ``attempts`` is below
        ``max_attempts``; otherwise it becomes ``error`` and keeps the message.

        Returns:
            The status the task was moved to
        """
        status = TASK_ERROR if attempts >= max_attempts else TASK_QUEUED
        self._set_status([task_id], status, [TASK_RUNNING, TASK_QUEUED], attempts=attempts, error=error[:2000])
        if status == TASK_ERROR:
            logger.warning("task_errored", task_id=task_id, attempts=attempts, error=error)
        else:
            logger.info("task_requeued", task_id=task_id, attempts=attempts, error=error)
        return status

    def cancel_queued_for_report(self, report_id: int) -> int:
        stmt = (
            update(AnalysisTask)
            .where(AnalysisTask.report_id == report_id, AnalysisTask.status == TASK_QUEUED)
            .values(status=TASK_CANCELED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def requeue_errors(self, report_id: int) -> int:
        """Explicit operator requeue of errored tasks with a fresh attempt budget."""
        stmt = (
            update(AnalysisTask)
            .where(AnalysisTask.report_id == report_id, AnalysisTask.status == TASK_ERROR)
            .values(status=TASK_QUEUED, attempts=0, error=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def requeue_stale_running(self, updated_before: datetime) -> int:
        """Return tasks orphaned in ``running`` by a crashed tick to the queue."""
        stmt = (
            update(AnalysisTask)
            .where(AnalysisTask.status == TASK_RUNNING, AnalysisTask.updated_at < updated_before)
            .values(status=TASK_QUEUED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_for_report(self, report_id: int, status: Optional[str] = None) -> List[AnalysisTask]:
        stmt = select(AnalysisTask).where(AnalysisTask.report_id == report_id)
        if status is not None:
            stmt = stmt.where(AnalysisTask.status == status)
        return list(self.session.scalars(stmt.order_by(AnalysisTask.created_at, AnalysisTask.id)))

    def count_active(self, report_id: int) -> int:
        """Queued plus running tasks of a report."""
        stmt = select(func.count(AnalysisTask.id)).where(
            AnalysisTask.report_id == report_id,
            AnalysisTask.status.in_(list(ACTIVE_TASK_STATUSES)),
        )
        return self.session.scalar(stmt) or 0

    def status_counts(self, report_id: int) -> Dict[str, int]:
        stmt = (
            select(AnalysisTask.status, func.count(AnalysisTask.id))
            .where(AnalysisTask.report_id == report_id)
            .group_by(AnalysisTask.status)
        )
        return {status: count for status, count in self.session.execute(stmt)}

    def errored_issue_ids(self, report_id: int) -> set[str]:
        stmt = select(AnalysisTask.issue_id).where(
            AnalysisTask.report_id == report_id, AnalysisTask.status == TASK_ERROR
        )
        return set(self.session.scalars(stmt))

    def workload_for_owner(self, owner_user_id: int) -> Dict[str, int]:
        return {
            "queued": self.count_by_owner(owner_user_id, TASK_QUEUED),
            "running": self.count_by_owner(owner_user_id, TASK_RUNNING),
        }

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def delete_for_report(self, report_id: int) -> int:
        stmt = delete(AnalysisTask).where(AnalysisTask.report_id == report_id)
        return self.session.execute(stmt).rowcount

    def vacuum(self, updated_before: datetime) -> int:
        """Delete terminal tasks last touched before ``updated_before``."""
        stmt = delete(AnalysisTask).where(
            AnalysisTask.status.in_(list(TERMINAL_TASK_STATUSES)),
            AnalysisTask.updated_at < updated_before,
        )
        return self.session.execute(stmt).rowcount


__all__ = ["TaskRepository"]
