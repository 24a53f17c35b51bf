"""
Report model and helpers for the issues embedded in it.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_watcher.timeutils import utcnow

from .base import Base

if TYPE_CHECKING:
    from .user import User


def new_issue_record(
    *,
    issue_id: str,
    number: int,
    title: str,
    body: str = "",
    labels: Optional[List[str]] = None,
    created_at: Optional[str] = None,
    url: Optional[str] = None,
    state: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an embedded issue in its not-yet-analyzed state."""
    return {
        "id": issue_id,
        "number": number,
        "title": title,
        "body": body or "",
        "labels": list(labels or []),
        "created_at": created_at,
        "url": url,
        "state": state,
        "relevance_score": 0,
        "explanation": "",
        "matched_terms": [],
        "evidence": [],
    }


def is_pending(issue: Dict[str, Any]) -> bool:
    """An issue is pending until it carries an explanation."""
    return not (issue.get("explanation") or "").strip()


class Report(Base):
    """
    One user's request to analyze a repository's issues for a keyword.

    Issues are embedded as a JSON list and have no identity outside the
    report. ``version`` is the optimistic concurrency counter: every ORM
    flush and every atomic UPDATE bumps it, so a writer holding a stale copy
    fails with StaleDataError instead of overwriting concurrent progress.
    """

    __tablename__ = "reports"
    __table_args__ = (
        Index("ix_reports_user_repo_keyword", "user_id", "repo_url", "keyword"),
        Index("ix_reports_complete_final_email", "is_complete", "final_email_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    repo_url: Mapped[str] = mapped_column(String(512))
    keyword: Mapped[str] = mapped_column(String(255))
    issues: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    cursor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    is_canceled: Mapped[bool] = mapped_column(Boolean, default=False)
    emails_sent: Mapped[int] = mapped_column(Integer, default=0)
    request_counter: Mapped[int] = mapped_column(Integer, default=0)
    last_partial_cursor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_email_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # last time the report was handed to the email or pagination step
    last_handoff_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    user: Mapped["User"] = relationship("User", back_populates="reports")

    __mapper_args__ = {"version_id_col": version}

    def issue_ids(self) -> set[str]:
        return {issue["id"] for issue in self.issues or []}

    def pending_issues(self) -> List[Dict[str, Any]]:
        return [issue for issue in self.issues or [] if is_pending(issue)]

    @property
    def pending_count(self) -> int:
        return len(self.pending_issues())

    def relevant_issues(self, threshold: int) -> List[Dict[str, Any]]:
        """Issues scoring strictly above ``threshold``, best first."""
        relevant = [
            issue
            for issue in self.issues or []
            if int(issue.get("relevance_score") or 0) > threshold
        ]
        return sorted(relevant, key=lambda issue: issue.get("relevance_score", 0), reverse=True)

    def to_dict(self, include_issues: bool = True) -> Dict[str, Any]:
        """
        Convert the report into a serializable dictionary.

        Returns:
            Dictionary compatible with API responses.
        """
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "repo_url": self.repo_url,
            "keyword": self.keyword,
            "cursor": self.cursor,
            "is_complete": self.is_complete,
            "is_canceled": self.is_canceled,
            "emails_sent": self.emails_sent,
            "request_counter": self.request_counter,
            "last_partial_cursor": self.last_partial_cursor,
            "final_email_at": self.final_email_at.isoformat() if self.final_email_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_fetched_at": self.last_fetched_at.isoformat() if self.last_fetched_at else None,
            "issue_count": len(self.issues or []),
            "pending_count": self.pending_count,
        }
        if include_issues:
            data["issues"] = list(self.issues or [])
        return data
