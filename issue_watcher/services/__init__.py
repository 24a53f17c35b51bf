"""
Business logic services.

Every service takes its collaborators (database, settings, clock,
scheduler) as constructor arguments defaulting to the process-wide ones,
so tests can drive them with an in-memory database and a fake clock.
"""

from .completion_service import CompletionService, ReportProgress, failure_placeholder
from .lock_service import LockService
from .maintenance_service import MaintenanceService
from .notification_service import EmailDecision, NotificationService
from .pagination_service import PageResult, PaginationService
from .rate_limiter import Quota, RateLimiter, Window, windows_from_settings
from .report_service import ReportService, Submission
from .scheduler import ACTIONS, Scheduler
from .worker_service import Analyzer, TaskSnapshot, TickResult, WorkerService

__all__ = [
    "ACTIONS",
    "Analyzer",
    "CompletionService",
    "EmailDecision",
    "LockService",
    "MaintenanceService",
    "NotificationService",
    "PageResult",
    "PaginationService",
    "Quota",
    "RateLimiter",
    "ReportProgress",
    "ReportService",
    "Scheduler",
    "Submission",
    "TaskSnapshot",
    "TickResult",
    "Window",
    "WorkerService",
    "failure_placeholder",
    "windows_from_settings",
]
