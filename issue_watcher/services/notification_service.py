"""
Completion and notification coordinator.

Decides whether a report gets an email now and chains pagination to email
cadence: one partial email per analyzed page, then the next page.

Both kinds of email are claimed before they are sent. The claim is a
conditional UPDATE, so two workers entering here for the same report
cannot both send. When delivery fails the claim is handed back, letting
the Celery retry of the same action claim and send again.
"""

from dataclasses import dataclass
from typing import Optional

from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import ACTION_PROCESS_NEXT_PAGE
from issue_watcher.db import DatabaseManager, db
from issue_watcher.exceptions import EmailDeliveryError, ReportNotFoundError
from issue_watcher.logging import email_logger as logger, log_context
from issue_watcher.notifications import (
    EmailClient,
    SendResult,
    build_subject,
    render_no_relevant,
    render_report,
)
from issue_watcher.repositories import ReportRepository
from issue_watcher.timeutils import Clock, utcnow

from .scheduler import Scheduler


@dataclass
class EmailDecision:
    """What the coordinator did for one report."""

    action: str
    relevant: int = 0
    subject: Optional[str] = None


class NotificationService:
    def __init__(
        self,
        scheduler: Scheduler,
        email_client: Optional[EmailClient] = None,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.scheduler = scheduler
        self.email_client = email_client or EmailClient()
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock

    def send_report_email(self, report_id: int, page_cursor: Optional[str] = None) -> EmailDecision:
        """
        Send the partial or final email a report is due, if any.

        Args:
            report_id: Report to notify about
            page_cursor: Cursor of the page that just finished. Defaults to the
                report's current cursor.

        Raises:
            ReportNotFoundError: report does not exist
            EmailDeliveryError: every send attempt failed
        """
        with log_context(report_id=report_id):
            return self._send(report_id, page_cursor)

    def _send(self, report_id: int, page_cursor: Optional[str]) -> EmailDecision:
        with self.database.session() as session:
            report = ReportRepository(session).get_by_id(report_id)
            if report is None:
                raise ReportNotFoundError(report_id)
            if report.is_canceled:
                logger.info("email_skipped_canceled")
                return EmailDecision("skipped_canceled")

            is_final = report.is_complete
            cursor = None if is_final else (page_cursor or report.cursor)
            relevant = report.relevant_issues(self.settings.relevance_threshold)
            recipient = report.user.email
            repo_url = report.repo_url
            keyword = report.keyword
            total_issues = len(report.issues or [])
            emails_sent = report.emails_sent or 0
            previous_partial = report.last_partial_cursor

        if not is_final and cursor is None:
            # still analyzing the last page; the final email comes with completion
            logger.info("email_skipped_in_progress")
            return EmailDecision("skipped_in_progress")

        if not relevant and not is_final:
            logger.info("email_skipped_no_relevant", cursor=cursor)
            self._schedule_next_page(report_id, cursor)
            return EmailDecision("next_page")

        if not self._claim(report_id, is_final, cursor):
            logger.info("email_already_claimed", final=is_final, cursor=cursor)
            return EmailDecision("skipped_duplicate")

        if not relevant:
            subject = build_subject(repo_url, is_final=True, sequence=None)
            html = render_no_relevant(repo_url, keyword, total_issues, self.settings.relevance_threshold)
            text = None
        else:
            sequence = None if (is_final and emails_sent == 0) else emails_sent + 1
            subject = build_subject(repo_url, is_final=is_final, sequence=sequence)
            html, text = render_report(repo_url, keyword, recipient, relevant)

        try:
            self._deliver(recipient, subject, html, text)
        except EmailDeliveryError:
            self._release(report_id, is_final, cursor, previous_partial)
            raise

        with self.database.session() as session:
            ReportRepository(session).increment_emails_sent(report_id)
        logger.info("report_email_sent", final=is_final, relevant=len(relevant), subject=subject)

        if not is_final:
            self._schedule_next_page(report_id, cursor)
        return EmailDecision("sent_final" if is_final else "sent_partial", len(relevant), subject)

    def _claim(self, report_id: int, is_final: bool, cursor: Optional[str]) -> bool:
        with self.database.session() as session:
            reports = ReportRepository(session)
            if is_final:
                return reports.claim_final_email(report_id, self.clock())
            return reports.claim_partial_email(report_id, cursor)

    def _release(
        self, report_id: int, is_final: bool, cursor: Optional[str], previous_partial: Optional[str]
    ) -> None:
        """Undo a claim whose email never went out so a retry can claim it again."""
        with self.database.session() as session:
            reports = ReportRepository(session)
            if is_final:
                reports.release_final_email_claim(report_id)
            else:
                reports.release_partial_email_claim(report_id, cursor, previous_partial)

    def _deliver(self, recipient: str, subject: str, html: str, text: Optional[str]) -> SendResult:
        result = SendResult(success=False, error="not attempted")
        for attempt in range(1, self.settings.email_max_attempts + 1):
            result = self.email_client.send(recipient, subject, html, text)
            if result.success:
                return result
            logger.warning("email_send_failed", attempt=attempt, error=result.error)
        raise EmailDeliveryError(f"Failed to send email: {result.error}")

    def _schedule_next_page(self, report_id: int, cursor: Optional[str]) -> None:
        if cursor:
            self.scheduler.run_after(
                0, ACTION_PROCESS_NEXT_PAGE, report_id=report_id, expected_cursor=cursor
            )
