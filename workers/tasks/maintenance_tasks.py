"""
Housekeeping tasks run from the beat schedule.
"""

from celery import shared_task

from issue_watcher.logging import get_logger, log_job
from issue_watcher.services import MaintenanceService

from ..scheduler import CeleryScheduler

logger = get_logger("worker.maintenance")


@shared_task(name="workers.tasks.maintenance_tasks.vacuum_tasks")
@log_job("vacuum_tasks", logger=logger)
def vacuum_tasks_task() -> dict:
    """Delete terminal analysis tasks older than the retention window."""
    deleted = MaintenanceService(CeleryScheduler()).vacuum_tasks()
    return {"deleted": deleted}


@shared_task(name="workers.tasks.maintenance_tasks.vacuum_rate_limits")
@log_job("vacuum_rate_limits", logger=logger)
def vacuum_rate_limits_task() -> dict:
    deleted = MaintenanceService(CeleryScheduler()).vacuum_rate_limits()
    return {"deleted": deleted}


@shared_task(name="workers.tasks.maintenance_tasks.requeue_stale_tasks")
def requeue_stale_tasks_task() -> dict:
    """Return tasks stranded in ``running`` to the queue and wake the worker."""
    requeued = MaintenanceService(CeleryScheduler()).requeue_stale_running()
    return {"requeued": requeued}
