"""
Rows backing cross-process coordination: rate-limit buckets and leases.

Neither is held in process memory; workers are short-lived Celery task
invocations that only share the database.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from issue_watcher.timeutils import EPOCH, utcnow

from .base import Base


class RateLimitBucket(Base):
    """
    Consumption counters for one fixed time window.

    ``bucket`` is ``<window>:<index>`` where index is
    ``floor(epoch_seconds / window_seconds)``, e.g. ``m:28512345``.
    """

    __tablename__ = "rate_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bucket: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    window: Mapped[str] = mapped_column(String(8))
    window_start: Mapped[datetime] = mapped_column(DateTime, index=True)
    requests: Mapped[int] = mapped_column(Integer, default=0)
    tokens: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Lock(Base):
    """Named lease. Free when ``lease_expires_at`` is in the past."""

    __tablename__ = "locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    lease_expires_at: Mapped[datetime] = mapped_column(DateTime, default=EPOCH)
    owner: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acquired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
