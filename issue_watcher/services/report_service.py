"""
Report lifecycle operations behind the API: submit, read, cancel, delete,
plus the operator helpers used when a report gets stuck.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from issue_watcher.api.github_api import fetch_issues_page, parse_repo_url
from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import ACTION_TICK
from issue_watcher.db import DatabaseManager, db
from issue_watcher.exceptions import GitHubError, InvalidKeywordError, ReportNotFoundError
from issue_watcher.logging import get_logger, log_context
from issue_watcher.models import Report, User
from issue_watcher.repositories import ReportRepository, TaskRepository, UserRepository
from issue_watcher.timeutils import Clock, utcnow

from .pagination_service import PageFetcher, PaginationService
from .scheduler import Scheduler

logger = get_logger("reports")

DEBUG_PENDING_SAMPLE = 5


@dataclass
class Submission:
    """
    Result of ``ReportService.submit``.

    ``status`` is ``created`` (new report, first page fetched), ``cached``
    (recent complete report reused), ``in_progress`` (already being worked
    on) or ``refreshed`` (stale or canceled report reset and refetched).
    """

    report: Dict[str, Any]
    status: str


class ReportService:
    def __init__(
        self,
        scheduler: Scheduler,
        fetch_page: PageFetcher = fetch_issues_page,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        pagination: Optional[PaginationService] = None,
    ):
        self.scheduler = scheduler
        self.fetch_page = fetch_page
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock
        self.pagination = pagination or PaginationService(
            scheduler, fetch_page=fetch_page, database=database, settings=self.settings, clock=clock
        )

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(self, user_email: str, repo_url: str, keyword: str) -> Submission:
        """
        Start, reuse or restart the report for ``(repo_url, keyword)``.

        The first page is fetched before returning so credential and
        repository errors reach the caller instead of a background job.

        Raises:
            InvalidRepositoryURLError: ``repo_url`` is not a GitHub repository URL
            InvalidKeywordError: ``keyword`` is blank
            GitHubError subclasses from the first page fetch
        """
        repo_url = repo_url.strip().rstrip("/")
        parse_repo_url(repo_url)
        keyword = (keyword or "").strip().lower()
        if not keyword:
            raise InvalidKeywordError("Keyword must not be empty")

        now = self.clock()
        with self.database.session() as session:
            user = UserRepository(session).get_or_create(user_email)
            reports = ReportRepository(session)
            report = reports.find_for_submission(user.id, repo_url, keyword)

            if report is not None:
                reports.increment_request_counter(report.id)
                session.refresh(report)
                if report.is_complete and not report.is_canceled and self._is_fresh(report, now):
                    logger.info("report_cache_hit", report_id=report.id)
                    return Submission(report.to_dict(), "cached")
                if not report.is_complete and not report.is_canceled:
                    logger.info("report_already_in_progress", report_id=report.id)
                    self.scheduler.run_after(0, ACTION_TICK)
                    return Submission(report.to_dict(), "in_progress")
                self._reset(session, report)
                status = "refreshed"
            else:
                report = reports.create(
                    user_id=user.id,
                    repo_url=repo_url,
                    keyword=keyword,
                    issues=[],
                    request_counter=1,
                    created_at=now,
                )
                status = "created"
            report_id = report.id

        with log_context(report_id=report_id):
            logger.info("report_submitted", repo_url=repo_url, keyword=keyword, status=status)
            try:
                # runs inside the HTTP request, so a low GitHub quota fails fast
                page = self.fetch_page(
                    repo_url, page_size=self.settings.github_page_size, after=None, max_wait=0
                )
            except GitHubError as e:
                # a report without its first page must not be finalized by the rescue scan
                with self.database.session() as session:
                    ReportRepository(session).cancel(report_id)
                logger.error("first_page_failed", error=str(e), error_type=type(e).__name__)
                raise
            self.pagination.append_page(report_id, page, expected_cursor=None)

        return Submission(self.get_report(report_id), status)

    def _is_fresh(self, report: Report, now) -> bool:
        fetched = report.last_fetched_at or report.created_at
        ttl = timedelta(seconds=self.settings.report_cache_ttl_seconds)
        return fetched is not None and now - fetched < ttl

    def _reset(self, session, report: Report) -> None:
        TaskRepository(session).delete_for_report(report.id)
        report.issues = []
        report.cursor = None
        report.is_complete = False
        report.is_canceled = False
        report.last_partial_cursor = None
        report.final_email_at = None
        report.last_handoff_at = None
        session.flush()
        logger.info("report_reset", report_id=report.id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_report(self, report_id: int, user_email: Optional[str] = None) -> Dict[str, Any]:
        with self.database.session() as session:
            return self._load(session, report_id, user_email).to_dict()

    def list_reports(self, user_email: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with self.database.session() as session:
            user = UserRepository(session).get_by_email(user_email.strip().lower())
            if user is None:
                return []
            reports = ReportRepository(session).list_for_user(user.id, limit=limit, offset=offset)
            return [report.to_dict(include_issues=False) for report in reports]

    def workload(self, user_email: str) -> Dict[str, int]:
        """Open reports and queued/running tasks of one user."""
        with self.database.session() as session:
            user = UserRepository(session).get_by_email(user_email.strip().lower())
            if user is None:
                return {"open_reports": 0, "queued": 0, "running": 0}
            counts = TaskRepository(session).workload_for_owner(user.id)
            return {
                "open_reports": ReportRepository(session).count_open_for_user(user.id),
                "queued": counts["queued"],
                "running": counts["running"],
            }

    # -------------------------------------------------------------------------
    # Cancel / delete
    # -------------------------------------------------------------------------

    def cancel_report(self, report_id: int, user_email: Optional[str] = None) -> Dict[str, Any]:
        """
        Stop a report: no further pages, queued tasks canceled now, results of
        in-flight tasks discarded when they come back.
        """
        with self.database.session() as session:
            self._load(session, report_id, user_email)
            ReportRepository(session).cancel(report_id)
            canceled = TaskRepository(session).cancel_queued_for_report(report_id)
        logger.info("report_canceled", report_id=report_id, tasks_canceled=canceled)
        return self.get_report(report_id)

    def delete_report(self, report_id: int, user_email: Optional[str] = None) -> int:
        """Cancel, then delete the report and every task that references it."""
        with self.database.session() as session:
            self._load(session, report_id, user_email)
            reports = ReportRepository(session)
            reports.cancel(report_id)
            deleted = TaskRepository(session).delete_for_report(report_id)
            session.expire_all()
            reports.delete(report_id)
        logger.info("report_deleted", report_id=report_id, tasks_deleted=deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Operator helpers
    # -------------------------------------------------------------------------

    def enqueue_missing_tasks(self, report_id: int) -> int:
        """Queue a task for every issue of the report that has none."""
        with self.database.session() as session:
            report = self._load(session, report_id)
            if report.is_complete or report.is_canceled:
                return 0
            created = TaskRepository(session).enqueue_for_report(
                report,
                report.issues or [],
                estimated_tokens=self.settings.llm_estimated_tokens,
                now=self.clock(),
            )
        if created:
            self.scheduler.run_after(0, ACTION_TICK)
        return created

    def requeue_error_tasks(self, report_id: int, user_email: Optional[str] = None) -> int:
        with self.database.session() as session:
            self._load(session, report_id, user_email)
            requeued = TaskRepository(session).requeue_errors(report_id)
        logger.info("error_tasks_requeued", report_id=report_id, count=requeued)
        if requeued:
            self.scheduler.run_after(0, ACTION_TICK)
        return requeued

    def debug_report(self, report_id: int, user_email: Optional[str] = None) -> Dict[str, Any]:
        with self.database.session() as session:
            report = self._load(session, report_id, user_email)
            pending = report.pending_issues()
            return {
                "report_id": report.id,
                "total_issues": len(report.issues or []),
                "pending": len(pending),
                "cursor": report.cursor,
                "is_complete": report.is_complete,
                "is_canceled": report.is_canceled,
                "emails_sent": report.emails_sent,
                "has_relevant": bool(report.relevant_issues(self.settings.relevance_threshold)),
                "pending_sample": [
                    {"id": issue["id"], "number": issue.get("number"), "title": issue.get("title")}
                    for issue in pending[:DEBUG_PENDING_SAMPLE]
                ],
                "tasks": TaskRepository(session).status_counts(report.id),
            }

    @staticmethod
    def _load(session, report_id: int, user_email: Optional[str] = None) -> Report:
        """Fetch a report, hiding reports owned by someone else."""
        report = ReportRepository(session).get_by_id(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        if user_email is not None:
            owner: User = report.user
            if owner.email != user_email.strip().lower():
                raise ReportNotFoundError(report_id)
        return report
