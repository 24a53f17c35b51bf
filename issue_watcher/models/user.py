"""
User model.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_watcher.timeutils import utcnow

from .base import Base

if TYPE_CHECKING:
    from .report import Report


class User(Base):
    """
    Report owner, identified by the address reports are emailed to.

    Authentication happens upstream; a row is created the first time an
    address submits a report.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    reports: Mapped[list["Report"]] = relationship("Report", back_populates="user")
