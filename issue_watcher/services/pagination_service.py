"""
Report pagination driver.

Fetches the page after a report's cursor, appends it, enqueues one analysis
task per new issue and wakes the worker. The next page is not requested
from here: it follows the partial email for this page once its analysis
drains (see CompletionService and NotificationService).
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm.exc import StaleDataError

from issue_watcher.api.github_api import IssuePage, fetch_issues_page
from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import ACTION_TICK
from issue_watcher.db import DatabaseManager, db
from issue_watcher.logging import get_logger, log_context
from issue_watcher.repositories import ReportRepository, TaskRepository
from issue_watcher.timeutils import Clock, utcnow

from .completion_service import CompletionService
from .scheduler import Scheduler

logger = get_logger("pagination")

PageFetcher = Callable[..., IssuePage]


@dataclass
class PageResult:
    action: str
    fetched: int = 0
    enqueued: int = 0
    next_cursor: Optional[str] = None


class PaginationService:
    def __init__(
        self,
        scheduler: Scheduler,
        fetch_page: PageFetcher = fetch_issues_page,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        completion: Optional[CompletionService] = None,
    ):
        self.scheduler = scheduler
        self.fetch_page = fetch_page
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock
        self.completion = completion or CompletionService(
            scheduler, database=database, settings=self.settings, clock=clock
        )

    def fetch_and_enqueue_next_page(
        self, report_id: int, expected_cursor: Optional[str] = None
    ) -> PageResult:
        """
        Advance ``report_id`` by one page.

        A no-op for missing, complete or canceled reports, for reports without
        a cursor, and when ``expected_cursor`` is given but the report has
        already moved past it (a duplicate request for the same page).

        Raises:
            GitHubError subclasses from the page fetcher
        """
        with log_context(report_id=report_id):
            with self.database.session() as session:
                report = ReportRepository(session).get_by_id(report_id)
                if report is None or report.is_complete or report.is_canceled or not report.cursor:
                    logger.info(
                        "next_page_nothing_to_do",
                        found=report is not None,
                        is_complete=getattr(report, "is_complete", None),
                        is_canceled=getattr(report, "is_canceled", None),
                    )
                    return PageResult("noop")
                if expected_cursor is not None and report.cursor != expected_cursor:
                    logger.info("next_page_already_advanced", expected=expected_cursor)
                    return PageResult("noop")
                cursor = report.cursor
                repo_url = report.repo_url

            page = self.fetch_page(repo_url, page_size=self.settings.github_page_size, after=cursor)
            return self.append_page(report_id, page, expected_cursor=cursor)

    def append_page(self, report_id: int, page: IssuePage, expected_cursor: Optional[str]) -> PageResult:
        """
        Store ``page`` on the report if its cursor is still ``expected_cursor``.

        New issues are deduplicated by id and truncated at the per-report cap;
        hitting the cap also drops the cursor so the report completes once the
        kept issues are analyzed.
        """
        cap = self.settings.max_issues_per_report
        try:
            with self.database.session() as session:
                reports = ReportRepository(session)
                report = reports.get_by_id(report_id)
                if report is None or report.is_complete or report.is_canceled:
                    return PageResult("noop")
                if report.cursor != expected_cursor:
                    logger.info("page_discarded_cursor_moved", expected=expected_cursor)
                    return PageResult("noop")

                known = report.issue_ids()
                fresh = []
                for issue in page.issues:
                    if issue["id"] not in known:
                        known.add(issue["id"])
                        fresh.append(issue)

                existing = list(report.issues or [])
                room = max(0, cap - len(existing))
                next_cursor = page.next_cursor
                if len(fresh) >= room:
                    if len(fresh) > room or next_cursor:
                        logger.warning(
                            "report_issue_cap_reached", cap=cap, dropped=len(fresh) - room
                        )
                    fresh = fresh[:room]
                    next_cursor = None

                report.issues = existing + fresh
                report.cursor = next_cursor
                report.last_fetched_at = self.clock()
                session.flush()

                enqueued = TaskRepository(session).enqueue_for_report(
                    report, fresh, estimated_tokens=self.settings.llm_estimated_tokens
                )
        except StaleDataError:
            logger.info("page_discarded_concurrent_write")
            return PageResult("noop")

        logger.info(
            "page_appended",
            fetched=len(page.issues),
            added=len(fresh),
            enqueued=enqueued,
            has_next_page=next_cursor is not None,
        )

        if enqueued:
            self.scheduler.run_after(0, ACTION_TICK)
        else:
            # an empty or fully duplicate page leaves nothing for the worker to finish
            self.completion.reconcile(report_id)
        return PageResult("appended", len(page.issues), enqueued, next_cursor)
