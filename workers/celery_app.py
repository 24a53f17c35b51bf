"""
Celery application for Issue Watcher.

Redis carries the messages only; the analysis queue itself, the worker
lease and the rate buckets live in the database. Work is split over three
queues so a long pagination backlog never delays the tick:

    celery -A workers worker -Q analysis -c 1 --prefetch-multiplier=1
    celery -A workers worker -Q reports,default -c 2
    celery -A workers worker -Q maintenance -c 1
"""

from celery import Celery
from celery.signals import worker_process_init
from kombu import Exchange, Queue

from issue_watcher.config import get_settings
from workers.schedules import apply_beat_schedule

settings = get_settings()

TASK_MODULES = (
    "workers.tasks.analysis_tasks",
    "workers.tasks.report_tasks",
    "workers.tasks.maintenance_tasks",
)

# queue name -> task module glob routed to it
QUEUE_ROUTES = {
    "analysis": "workers.tasks.analysis_tasks.*",
    "reports": "workers.tasks.report_tasks.*",
    "maintenance": "workers.tasks.maintenance_tasks.*",
}


def _direct_queue(name: str) -> Queue:
    return Queue(name, Exchange(name, type="direct"), routing_key=name)


celery_app = Celery(
    "issue_watcher",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=list(TASK_MODULES),
)

celery_app.conf.update(
    task_queues=tuple(_direct_queue(name) for name in ("default", *QUEUE_ROUTES)),
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",
    task_routes={pattern: {"queue": name, "routing_key": name} for name, pattern in QUEUE_ROUTES.items()},
    # task arguments are ids and cursors; nothing here needs pickle
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # a tick killed mid-flight is redelivered; the lease keeps it from overlapping
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
    result_expires=3600,
    worker_hijack_root_logger=False,
)


@worker_process_init.connect
def setup_worker_process(**kwargs):
    """Each forked worker process gets its own logging setup and engine."""
    from issue_watcher.db import db
    from issue_watcher.logging import configure_celery_logging, configure_logging

    configure_logging(level=settings.log_level)
    configure_celery_logging()
    db.initialize()


apply_beat_schedule(celery_app)
