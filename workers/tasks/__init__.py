"""Celery task definitions."""

from workers.tasks.analysis_tasks import tick_task
from workers.tasks.maintenance_tasks import (
    requeue_stale_tasks_task,
    vacuum_rate_limits_task,
    vacuum_tasks_task,
)
from workers.tasks.report_tasks import process_next_page_task, send_report_email_task

__all__ = [
    # Worker loop
    "tick_task",
    # Reports
    "process_next_page_task",
    "send_report_email_task",
    # Maintenance
    "vacuum_tasks_task",
    "vacuum_rate_limits_task",
    "requeue_stale_tasks_task",
]
