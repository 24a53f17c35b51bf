"""
SQLAlchemy models for Issue Watcher.

Usage:
    from issue_watcher.models import Report, AnalysisTask
"""

from .base import Base
from .coordination import Lock, RateLimitBucket
from .report import Report, is_pending, new_issue_record
from .task import AnalysisTask
from .user import User

__all__ = [
    "Base",
    "User",
    "Report",
    "AnalysisTask",
    "RateLimitBucket",
    "Lock",
    "new_issue_record",
    "is_pending",
]
