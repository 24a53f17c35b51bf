"""
Report pagination and email tasks.

Both are scheduled by the worker (or by each other) through
``CeleryScheduler`` and are safe to run twice for the same arguments.
Transient failures are retried by Celery; fatal ones are logged and dropped.
"""

from celery import shared_task
from celery.exceptions import MaxRetriesExceededError

from issue_watcher.exceptions import (
    EmailDeliveryError,
    GitHubAuthError,
    GitHubError,
    GitHubRateLimitError,
    ReportNotFoundError,
    RepositoryNotFoundError,
)
from issue_watcher.logging import get_logger
from issue_watcher.services import NotificationService, PaginationService
from issue_watcher.timeutils import utcnow

from ..scheduler import CeleryScheduler

logger = get_logger("worker.reports")

MAX_RATE_LIMIT_COUNTDOWN = 900


def _rate_limit_countdown(exc: GitHubRateLimitError, default: int) -> int:
    if exc.reset_at is None:
        return default
    wait = int((exc.reset_at - utcnow()).total_seconds()) + 1
    return min(max(wait, 1), MAX_RATE_LIMIT_COUNTDOWN)


@shared_task(
    bind=True,
    name="workers.tasks.report_tasks.process_next_page",
    max_retries=5,
    default_retry_delay=60,
    soft_time_limit=300,
    time_limit=600,
)
def process_next_page_task(self, report_id: int, expected_cursor: str | None = None) -> dict:
    """
    Fetch the next page of a report's issues and enqueue their analysis.

    Args:
        report_id: Report to advance
        expected_cursor: Cursor the page was scheduled for; a report that has
            moved past it makes this run a no-op

    Returns:
        Dictionary with pagination results
    """
    logger.info("next_page_started", report_id=report_id, expected_cursor=expected_cursor)

    try:
        result = PaginationService(CeleryScheduler()).fetch_and_enqueue_next_page(
            report_id, expected_cursor=expected_cursor
        )
        return {
            "report_id": report_id,
            "action": result.action,
            "fetched": result.fetched,
            "enqueued": result.enqueued,
            "has_next_page": result.next_cursor is not None,
        }

    except (GitHubAuthError, RepositoryNotFoundError) as exc:
        logger.error(
            "next_page_fatal",
            report_id=report_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return {"report_id": report_id, "action": "failed", "error": str(exc)}

    except GitHubError as exc:
        countdown = (
            _rate_limit_countdown(exc, self.default_retry_delay)
            if isinstance(exc, GitHubRateLimitError)
            else self.default_retry_delay
        )
        logger.warning(
            "next_page_retry",
            report_id=report_id,
            error=str(exc),
            error_type=type(exc).__name__,
            countdown=countdown,
        )
        try:
            self.retry(countdown=countdown)
        except MaxRetriesExceededError:
            # the rescue scan picks the report up again once the handoff cools down
            logger.error("next_page_max_retries", report_id=report_id)
            return {"report_id": report_id, "action": "failed", "error": str(exc)}


@shared_task(
    bind=True,
    name="workers.tasks.report_tasks.send_report_email",
    max_retries=3,
    default_retry_delay=120,
    soft_time_limit=120,
    time_limit=180,
)
def send_report_email_task(self, report_id: int, page_cursor: str | None = None) -> dict:
    """
    Send the partial or final email a report is due.

    Args:
        report_id: Report to notify about
        page_cursor: Cursor of the page that just finished, for partial emails

    Returns:
        Dictionary with the coordinator's decision
    """
    try:
        decision = NotificationService(CeleryScheduler()).send_report_email(
            report_id, page_cursor=page_cursor
        )
        return {"report_id": report_id, "action": decision.action, "relevant": decision.relevant}

    except ReportNotFoundError:
        logger.warning("email_report_missing", report_id=report_id)
        return {"report_id": report_id, "action": "missing"}

    except EmailDeliveryError as exc:
        logger.error("email_delivery_failed", report_id=report_id, error=str(exc))
        try:
            self.retry()
        except MaxRetriesExceededError:
            logger.error("email_max_retries", report_id=report_id)
            return {"report_id": report_id, "action": "failed", "error": str(exc)}
