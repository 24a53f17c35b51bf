"""
Report reconciliation: deciding what a report needs once its queued work
has drained.

Outcomes of ``reconcile``:
    skipped     report missing or canceled
    active      tasks still queued or running
    pending     issues still unanalyzed with no task to analyze them
    finalized   this call flipped the report to complete; final email scheduled
    complete    already complete, nothing to do
    page_done   current page fully analyzed; partial email and next page scheduled
"""

from dataclasses import dataclass
from typing import Optional

from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import (
    ACTION_PROCESS_NEXT_PAGE,
    ACTION_SEND_REPORT_EMAIL,
    ANALYSIS_FAILED_EXPLANATION,
)
from issue_watcher.db import DatabaseManager, db
from issue_watcher.logging import get_logger
from issue_watcher.models import is_pending
from issue_watcher.repositories import ReportRepository, TaskRepository
from issue_watcher.timeutils import Clock, utcnow

from .scheduler import Scheduler

logger = get_logger("completion")


@dataclass
class ReportProgress:
    report_id: int
    pending: int
    active: int
    cursor: Optional[str]
    is_complete: bool
    is_canceled: bool


def failure_placeholder(issue: dict) -> dict:
    """Determinate result for an issue whose analysis exhausted its retries."""
    updated = dict(issue)
    updated["relevance_score"] = 0
    updated["explanation"] = ANALYSIS_FAILED_EXPLANATION
    updated["matched_terms"] = []
    updated["evidence"] = []
    return updated


class CompletionService:
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

    def progress(self, report_id: int) -> Optional[ReportProgress]:
        """
        Pending and active counts for a report.

        When nothing is active, issues whose tasks ended in ``error`` get the
        failure placeholder first so they stop counting as pending.
        """
        with self.database.session() as session:
            reports = ReportRepository(session)
            tasks = TaskRepository(session)
            report = reports.get_by_id(report_id)
            if report is None:
                return None

            active = tasks.count_active(report_id)
            if active == 0 and report.pending_count and not report.is_canceled:
                errored = tasks.errored_issue_ids(report_id)
                if errored:
                    filled = 0
                    issues = []
                    for issue in report.issues:
                        if is_pending(issue) and issue["id"] in errored:
                            issue = failure_placeholder(issue)
                            filled += 1
                        issues.append(issue)
                    if filled:
                        report.issues = issues
                        session.flush()
                        logger.warning("failure_placeholders_written", report_id=report_id, count=filled)

            return ReportProgress(
                report_id=report_id,
                pending=report.pending_count,
                active=active,
                cursor=report.cursor,
                is_complete=report.is_complete,
                is_canceled=report.is_canceled,
            )

    def reconcile(self, report_id: int) -> str:
        progress = self.progress(report_id)
        if progress is None or progress.is_canceled:
            return "skipped"
        if progress.active:
            return "active"
        if progress.pending:
            return "pending"
        if progress.is_complete:
            return "complete"

        now = self.clock()
        if progress.cursor is None:
            with self.database.session() as session:
                reports = ReportRepository(session)
                won = reports.mark_complete(report_id)
                if won:
                    reports.stamp_handoff(report_id, now)
            if not won:
                return "complete"
            logger.info("report_finalized", report_id=report_id)
            self.scheduler.run_after(0, ACTION_SEND_REPORT_EMAIL, report_id=report_id)
            return "finalized"

        with self.database.session() as session:
            ReportRepository(session).stamp_handoff(report_id, now)
        logger.info("report_page_done", report_id=report_id, cursor=progress.cursor)
        self.scheduler.run_after(
            0, ACTION_SEND_REPORT_EMAIL, report_id=report_id, page_cursor=progress.cursor
        )
        self.scheduler.run_after(
            0, ACTION_PROCESS_NEXT_PAGE, report_id=report_id, expected_cursor=progress.cursor
        )
        return "page_done"
