"""Celery-backed scheduled continuations."""

from typing import Any

from issue_watcher.constants import (
    ACTION_PROCESS_NEXT_PAGE,
    ACTION_SEND_REPORT_EMAIL,
    ACTION_TICK,
)
from issue_watcher.logging import get_logger

logger = get_logger("worker.scheduler")

TASK_NAMES = {
    ACTION_TICK: "workers.tasks.analysis_tasks.tick",
    ACTION_PROCESS_NEXT_PAGE: "workers.tasks.report_tasks.process_next_page",
    ACTION_SEND_REPORT_EMAIL: "workers.tasks.report_tasks.send_report_email",
}


class CeleryScheduler:
    """
    Runs an action by sending its Celery task with a countdown.

    Tasks are sent by name so services never import the task modules.
    """

    def __init__(self, app=None):
        self._app = app

    @property
    def app(self):
        if self._app is None:
            from workers.celery_app import celery_app

            self._app = celery_app
        return self._app

    def run_after(self, delay_seconds: float, action: str, **kwargs: Any) -> None:
        try:
            task_name = TASK_NAMES[action]
        except KeyError:
            raise ValueError(f"Unknown action: {action}") from None
        self.app.send_task(task_name, kwargs=kwargs, countdown=max(0.0, delay_seconds))
        logger.debug("action_scheduled", action=action, delay_seconds=delay_seconds, **kwargs)
