"""
Periodic jobs run by Celery beat.

The rescue tick is the external wake-up for a worker that went idle: a
tick with nothing queued checks for reports that still need a page or a
final email. The rest is housekeeping.
"""

from celery.schedules import crontab

from issue_watcher.config import get_settings

settings = get_settings()

MAINTENANCE = {"queue": "maintenance"}


def get_beat_schedule() -> dict:
    return {
        "rescue-tick-every-minute": {
            "task": "workers.tasks.analysis_tasks.tick",
            "schedule": 60.0,
            # a backlog of rescue ticks is pointless once one has run
            "options": {"queue": "analysis", "expires": 55},
        },
        "requeue-stale-running-tasks": {
            "task": "workers.tasks.maintenance_tasks.requeue_stale_tasks",
            "schedule": crontab(minute="*/5"),
            "options": MAINTENANCE,
        },
        "vacuum-tasks-twice-daily": {
            "task": "workers.tasks.maintenance_tasks.vacuum_tasks",
            "schedule": crontab(minute=0, hour="*/12"),
            "options": MAINTENANCE,
        },
        "vacuum-rate-limits": {
            "task": "workers.tasks.maintenance_tasks.vacuum_rate_limits",
            "schedule": crontab(minute="*/10"),
            "options": MAINTENANCE,
        },
    }


def apply_beat_schedule(celery_app) -> None:
    """Install the schedule unless ENABLE_SCHEDULER is off for this deployment."""
    if not settings.enable_scheduler:
        return
    celery_app.conf.beat_schedule = get_beat_schedule()
    celery_app.conf.beat_schedule_filename = "celerybeat-schedule"
