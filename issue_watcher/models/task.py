"""
Analysis task model: the durable queue's rows.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from issue_watcher.constants import DEFAULT_TASK_PRIORITY, TASK_QUEUED
from issue_watcher.timeutils import utcnow

from .base import Base


class AnalysisTask(Base):
    """
    Scoring work for exactly one issue of one report.

    Status moves forward only: queued -> running -> done | queued (retry)
    | error | canceled. The report reference is used for lookup, not
    lifecycle; deleting a report deletes its tasks explicitly.
    """

    __tablename__ = "analysis_tasks"
    __table_args__ = (
        UniqueConstraint("report_id", "issue_id", name="uq_analysis_tasks_report_issue"),
        Index("ix_analysis_tasks_status_created", "status", "created_at"),
        Index("ix_analysis_tasks_owner_status", "owner_user_id", "status"),
        Index("ix_analysis_tasks_report_status", "report_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_id: Mapped[int] = mapped_column(ForeignKey("reports.id"))
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    keyword: Mapped[str] = mapped_column(String(255))
    issue_id: Mapped[str] = mapped_column(String(128))
    issue: Mapped[Dict[str, Any]] = mapped_column(JSON)
    estimated_tokens: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), default=TASK_QUEUED)
    priority: Mapped[int] = mapped_column(Integer, default=DEFAULT_TASK_PRIORITY)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "owner_user_id": self.owner_user_id,
            "issue_id": self.issue_id,
            "issue_number": (self.issue or {}).get("number"),
            "status": self.status,
            "priority": self.priority,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
