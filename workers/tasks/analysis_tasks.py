"""
Worker tick task.

Each run drains one bounded batch of queued analysis tasks and schedules
the next run itself. The beat schedule sends an extra tick every minute to
wake an idle worker.
"""

import asyncio
from dataclasses import asdict

from celery import shared_task

from issue_watcher.config import get_settings
from issue_watcher.llm import LLMClient
from issue_watcher.logging import get_logger
from issue_watcher.services import WorkerService

from ..scheduler import CeleryScheduler

logger = get_logger("worker.analysis")

settings = get_settings()


async def run_tick() -> dict:
    async with LLMClient() as client:
        service = WorkerService(CeleryScheduler(), analyzer=client)
        result = await service.tick()
    return asdict(result)


@shared_task(
    name="workers.tasks.analysis_tasks.tick",
    ignore_result=True,
    # the lease outlives any tick, so the hard limit only catches a hung process
    soft_time_limit=int(settings.lock_ttl_seconds),
    time_limit=int(settings.lock_ttl_seconds) + 30,
)
def tick_task() -> dict:
    """
    Run one worker tick.

    Returns:
        TickResult as a dictionary
    """
    try:
        result = asyncio.run(run_tick())
    except Exception as exc:
        logger.error("tick_failed", error=str(exc), error_type=type(exc).__name__)
        raise

    if result["action"] not in ("locked_out", "idle"):
        logger.info("tick_task_complete", **result)
    return result
