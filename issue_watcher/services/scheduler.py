"""
Scheduled continuations.

Work advances by each step enqueueing the next one with a delay instead of
running in a long-lived loop. Services only depend on this protocol; the
Celery implementation lives in ``workers.scheduler``.
"""

from typing import Any, Protocol

from issue_watcher.constants import (
    ACTION_PROCESS_NEXT_PAGE,
    ACTION_SEND_REPORT_EMAIL,
    ACTION_TICK,
)

ACTIONS = (ACTION_TICK, ACTION_PROCESS_NEXT_PAGE, ACTION_SEND_REPORT_EMAIL)


class Scheduler(Protocol):
    def run_after(self, delay_seconds: float, action: str, **kwargs: Any) -> None:
        """Run ``action`` with ``kwargs`` once ``delay_seconds`` have passed."""
        ...


__all__ = ["ACTIONS", "Scheduler"]
