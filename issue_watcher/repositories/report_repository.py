"""
Report repository.

Flags that several workers race on (completion, the final-email claim,
cancellation) are flipped with single conditional UPDATE statements so the
database decides the winner. Each of them bumps ``version`` so a concurrent
ORM writer holding a stale copy gets a StaleDataError and retries.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_, select, update

from issue_watcher.logging import get_logger
from issue_watcher.models import Report

from .base import BaseRepository

logger = get_logger("repository.report")


class ReportRepository(BaseRepository[Report]):
    model = Report

    def find_for_submission(self, user_id: int, repo_url: str, keyword: str) -> Optional[Report]:
        """Latest report of ``user_id`` for the (repo, keyword) pair."""
        stmt = (
            select(Report)
            .where(
                Report.user_id == user_id,
                Report.repo_url == repo_url,
                Report.keyword == keyword,
            )
            .order_by(Report.created_at.desc(), Report.id.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def list_for_user(self, user_id: int, limit: int = 50, offset: int = 0) -> List[Report]:
        stmt = (
            select(Report)
            .where(Report.user_id == user_id)
            .order_by(Report.created_at.desc(), Report.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def count_open_for_user(self, user_id: int) -> int:
        stmt = select(func.count(Report.id)).where(
            Report.user_id == user_id,
            Report.is_complete.is_(False),
            Report.is_canceled.is_(False),
        )
        return self.session.scalar(stmt) or 0

    def canceled_ids(self, report_ids: List[int]) -> set[int]:
        """Subset of ``report_ids`` that are canceled or no longer exist."""
        if not report_ids:
            return set()
        wanted = set(report_ids)
        stmt = select(Report.id, Report.is_canceled).where(Report.id.in_(wanted))
        live = {row.id for row in self.session.execute(stmt) if not row.is_canceled}
        return wanted - live

    # -------------------------------------------------------------------------
    # Atomic transitions
    # -------------------------------------------------------------------------

    def mark_complete(self, report_id: int) -> bool:
        """Flip ``is_complete`` false -> true. True only for the caller that flipped it."""
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.is_complete.is_(False),
                Report.is_canceled.is_(False),
            )
            .values(is_complete=True, cursor=None, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def claim_final_email(self, report_id: int, now: datetime) -> bool:
        """Test-and-set on ``final_email_at``. At most one caller ever wins."""
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.is_complete.is_(True),
                Report.is_canceled.is_(False),
                Report.final_email_at.is_(None),
            )
            .values(final_email_at=now, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        logger.debug("final_email_claim", report_id=report_id, won=won)
        return won

    def claim_partial_email(self, report_id: int, cursor: str) -> bool:
        """Test-and-set on ``last_partial_cursor``: one partial email per page."""
        stmt = (
            update(Report)
            .where(
                Report.id == report_id,
                Report.is_canceled.is_(False),
                or_(Report.last_partial_cursor.is_(None), Report.last_partial_cursor != cursor),
            )
            .values(last_partial_cursor=cursor, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        won = self.session.execute(stmt).rowcount == 1
        logger.debug("partial_email_claim", report_id=report_id, won=won)
        return won

    def release_final_email_claim(self, report_id: int) -> None:
        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .values(final_email_at=None, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def release_partial_email_claim(
        self, report_id: int, cursor: Optional[str], previous: Optional[str]
    ) -> None:
        """Restore ``previous`` unless another page has been claimed since."""
        stmt = (
            update(Report)
            .where(Report.id == report_id, Report.last_partial_cursor == cursor)
            .values(last_partial_cursor=previous, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def increment_emails_sent(self, report_id: int) -> None:
        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .values(emails_sent=Report.emails_sent + 1, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def increment_request_counter(self, report_id: int) -> None:
        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .values(request_counter=Report.request_counter + 1, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def cancel(self, report_id: int) -> bool:
        """Soft-cancel: stop pagination and let in-flight results be discarded."""
        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .values(is_canceled=True, cursor=None, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def stamp_handoff(self, report_id: int, now: datetime) -> None:
        stmt = (
            update(Report)
            .where(Report.id == report_id)
            .values(last_handoff_at=now, version=Report.version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    # -------------------------------------------------------------------------
    # Rescue scan
    # -------------------------------------------------------------------------

    def rescue_candidates(self, handed_off_before: datetime, limit: int) -> List[Report]:
        """
        Reports that may be ready without any queued work: complete ones whose
        final email was never claimed, and every unfinished one. Reports handed
        off after ``handed_off_before`` are left alone to avoid re-triggering
        work that is already scheduled.
        """
        stmt = (
            select(Report)
            .where(
                Report.is_canceled.is_(False),
                or_(Report.is_complete.is_(False), Report.final_email_at.is_(None)),
                or_(Report.last_handoff_at.is_(None), Report.last_handoff_at <= handed_off_before),
            )
            .order_by(Report.is_complete.desc(), Report.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))
