"""
Repository pattern implementations for data access.

Usage:
    from issue_watcher.repositories import TaskRepository
    from issue_watcher.db import db

    with db.session() as session:
        tasks = TaskRepository(session).select_queued(3, 20, 3)
"""

from .base import BaseRepository
from .report_repository import ReportRepository
from .task_repository import TaskRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "ReportRepository",
    "TaskRepository",
    "UserRepository",
]
