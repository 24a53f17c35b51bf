"""
Worker tick: drains a bounded batch of queued analysis tasks.

One tick runs under the ``llm_worker`` lease and ends by scheduling its own
continuation (or not, when there is nothing left to do):

    lock -> quota check -> select -> dispatch chunks -> commit -> reschedule

LLM calls within a chunk run concurrently; a failure only costs the task
it belongs to. Results are written back in one batch per report and
discarded when the report was canceled while the calls were in flight.
"""

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.orm.exc import StaleDataError

from issue_watcher.config import Settings, get_settings
from issue_watcher.constants import (
    ACTION_SEND_REPORT_EMAIL,
    ACTION_TICK,
    WORKER_LOCK_NAME,
    WORKER_LOCK_OWNER,
)
from issue_watcher.db import DatabaseManager, db
from issue_watcher.exceptions import ReportWriteConflictError
from issue_watcher.llm import AnalysisResult
from issue_watcher.logging import worker_logger as logger
from issue_watcher.models import AnalysisTask
from issue_watcher.repositories import ReportRepository, TaskRepository
from issue_watcher.timeutils import Clock, utcnow

from .completion_service import CompletionService
from .lock_service import LockService
from .rate_limiter import RateLimiter
from .scheduler import Scheduler


class Analyzer(Protocol):
    async def analyze_issue(self, keyword: str, issue: Dict[str, Any]) -> AnalysisResult:
        ...


@dataclass(frozen=True)
class TaskSnapshot:
    """Detached copy of a selected task, safe to use outside its session."""

    id: int
    report_id: int
    owner_user_id: int
    keyword: str
    issue_id: str
    issue: Dict[str, Any]
    attempts: int

    @classmethod
    def from_task(cls, task: AnalysisTask) -> "TaskSnapshot":
        return cls(
            id=task.id,
            report_id=task.report_id,
            owner_user_id=task.owner_user_id,
            keyword=task.keyword,
            issue_id=task.issue_id,
            issue=dict(task.issue or {}),
            attempts=task.attempts or 0,
        )


@dataclass
class Outcome:
    task: TaskSnapshot
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None


@dataclass
class TickResult:
    """
    Summary of one tick.

    ``action`` is one of locked_out, quota_exhausted, idle, rescued,
    budget_exhausted or drained.
    """

    action: str
    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    canceled: int = 0
    rescued: int = 0
    reports: List[int] = field(default_factory=list)


class WorkerService:
    def __init__(
        self,
        scheduler: Scheduler,
        analyzer: Analyzer,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        timer: Callable[[], float] = time.monotonic,
        rate_limiter: Optional[RateLimiter] = None,
        locks: Optional[LockService] = None,
        completion: Optional[CompletionService] = None,
    ):
        self.scheduler = scheduler
        self.analyzer = analyzer
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock
        self.timer = timer
        self.rate_limiter = rate_limiter or RateLimiter(database, self.settings, clock)
        self.locks = locks or LockService(database, clock)
        self.completion = completion or CompletionService(
            scheduler, database=database, settings=self.settings, clock=clock
        )

    async def tick(self) -> TickResult:
        """
        Run one tick. Returns immediately with ``locked_out`` when another
        tick holds the worker lease; that is not an error and schedules nothing.
        """
        with self.locks.hold(
            WORKER_LOCK_NAME, self.settings.lock_ttl_seconds, owner=WORKER_LOCK_OWNER
        ) as acquired:
            if not acquired:
                logger.debug("tick_lock_busy")
                return TickResult("locked_out")
            return await self._run()

    async def _run(self) -> TickResult:
        settings = self.settings
        started = self.timer()

        quota = self.rate_limiter.get_quota(settings.llm_estimated_tokens)
        if not quota.ok:
            logger.info("tick_quota_exhausted", retry_in=settings.worker_quota_retry_seconds)
            self.scheduler.run_after(settings.worker_quota_retry_seconds, ACTION_TICK)
            return TickResult("quota_exhausted")

        limit = min(quota.max_allowed_requests, settings.worker_max_concurrency)
        with self.database.session() as session:
            selected = [
                TaskSnapshot.from_task(task)
                for task in TaskRepository(session).select_queued(
                    limit,
                    per_owner_max_running=settings.per_owner_max_running,
                    per_owner_max_in_batch=settings.per_owner_max_in_batch,
                )
            ]

        work, canceled = self._drop_canceled(selected)
        result = TickResult("drained", selected=len(selected), canceled=canceled)
        if not work:
            return self._rescue(result)

        touched: set[int] = set()
        chunk_size = max(1, settings.worker_max_concurrency)
        for start in range(0, len(work), chunk_size):
            if self.timer() - started > settings.worker_tick_budget_seconds:
                logger.warning("tick_budget_exhausted", remaining=len(work) - start)
                self._reconcile(touched)
                self.scheduler.run_after(settings.worker_budget_retry_seconds, ACTION_TICK)
                result.action = "budget_exhausted"
                result.reports = sorted(touched)
                return result

            chunk, dropped = self._drop_canceled(work[start:start + chunk_size])
            result.canceled += dropped
            if not chunk:
                continue

            with self.database.session() as session:
                TaskRepository(session).mark_running([task.id for task in chunk])
            self.rate_limiter.consume(len(chunk), len(chunk) * settings.llm_estimated_tokens)

            outcomes = await asyncio.gather(*(self._analyze(task) for task in chunk))
            succeeded, failed, discarded = self._commit(outcomes)
            result.succeeded += succeeded
            result.failed += failed
            result.canceled += discarded
            touched.update(task.report_id for task in chunk)

        self._reconcile(touched)
        self.scheduler.run_after(settings.worker_tick_interval_seconds, ACTION_TICK)
        result.reports = sorted(touched)
        logger.info(
            "tick_complete",
            selected=result.selected,
            succeeded=result.succeeded,
            failed=result.failed,
            canceled=result.canceled,
        )
        return result

    def _drop_canceled(self, tasks: List[TaskSnapshot]) -> tuple[List[TaskSnapshot], int]:
        """Cancel tasks of canceled reports and return the rest."""
        if not tasks:
            return [], 0
        with self.database.session() as session:
            canceled_reports = ReportRepository(session).canceled_ids(
                sorted({task.report_id for task in tasks})
            )
            if not canceled_reports:
                return tasks, 0
            repo = TaskRepository(session)
            dropped = [task.id for task in tasks if task.report_id in canceled_reports]
            repo.mark_canceled(dropped)
            for report_id in canceled_reports:
                repo.cancel_queued_for_report(report_id)
        logger.info("tasks_dropped_report_canceled", count=len(dropped), reports=sorted(canceled_reports))
        return [task for task in tasks if task.report_id not in canceled_reports], len(dropped)

    async def _analyze(self, task: TaskSnapshot) -> Outcome:
        timeout = self.settings.llm_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.analyzer.analyze_issue(task.keyword, task.issue), timeout=timeout
            )
        except asyncio.TimeoutError:
            return Outcome(task, error=f"LLM call timed out after {timeout}s")
        except Exception as e:
            # isolate per-task failures from their siblings in the chunk
            return Outcome(task, error=str(e) or type(e).__name__)
        return Outcome(task, result=result)

    def _commit(self, outcomes: List[Outcome]) -> tuple[int, int, int]:
        failed = [outcome for outcome in outcomes if outcome.error is not None]
        for outcome in failed:
            with self.database.session() as session:
                TaskRepository(session).mark_requeue_or_error(
                    outcome.task.id,
                    attempts=outcome.task.attempts + 1,
                    error=outcome.error,
                    max_attempts=self.settings.task_max_attempts,
                )

        by_report: Dict[int, List[Outcome]] = defaultdict(list)
        for outcome in outcomes:
            if outcome.error is None:
                by_report[outcome.task.report_id].append(outcome)

        succeeded = discarded = conflicted = 0
        for report_id, group in by_report.items():
            try:
                written = self._write_report(report_id, group)
            except ReportWriteConflictError as e:
                # results are lost; the tasks go back through the retry ceiling
                self._fail_group(group, str(e))
                conflicted += len(group)
                continue
            succeeded += written
            discarded += len(group) - written
        return succeeded, len(failed) + conflicted, discarded

    def _fail_group(self, group: List[Outcome], error: str) -> None:
        logger.error("report_write_abandoned", report_id=group[0].task.report_id, count=len(group))
        with self.database.session() as session:
            tasks = TaskRepository(session)
            for outcome in group:
                tasks.mark_requeue_or_error(
                    outcome.task.id,
                    attempts=outcome.task.attempts + 1,
                    error=error,
                    max_attempts=self.settings.task_max_attempts,
                )

    def _write_report(self, report_id: int, group: List[Outcome]) -> int:
        """
        Patch a report's issues with a batch of results and mark the tasks done.

        Retried on optimistic-version conflicts.

        Returns:
            Number of results written, 0 when they were discarded.

        Raises:
            ReportWriteConflictError: every attempt lost the version race
        """
        task_ids = [outcome.task.id for outcome in group]
        results = {outcome.task.issue_id: outcome.result for outcome in group}
        attempts = self.settings.report_write_attempts

        for attempt in range(1, attempts + 1):
            try:
                with self.database.session() as session:
                    tasks = TaskRepository(session)
                    report = ReportRepository(session).get_by_id(report_id)
                    if report is None or report.is_canceled:
                        tasks.mark_canceled(task_ids)
                        logger.info("results_discarded_report_canceled", report_id=report_id, count=len(group))
                        return 0

                    issues = []
                    for issue in report.issues or []:
                        analysis = results.get(issue["id"])
                        issues.append(analysis.apply_to(issue) if analysis else issue)
                    report.issues = issues
                    session.flush()
                    tasks.mark_done(task_ids)
                return len(group)
            except StaleDataError:
                logger.warning("report_write_conflict", report_id=report_id, attempt=attempt)

        raise ReportWriteConflictError(report_id, attempts)

    def _reconcile(self, report_ids: set[int]) -> None:
        for report_id in sorted(report_ids):
            self.completion.reconcile(report_id)

    def _rescue(self, result: TickResult) -> TickResult:
        """
        Nothing to analyze: hand off reports that are ready without queued work.

        Complete reports get their final email scheduled; unfinished ones are
        reconciled, which schedules the partial email and next page for a
        finished page and re-enqueues issues that lost their task.
        """
        settings = self.settings
        now = self.clock()
        cutoff = now - timedelta(seconds=settings.worker_rescue_cooldown_seconds)

        with self.database.session() as session:
            reports = ReportRepository(session)
            tasks = TaskRepository(session)
            ready = []
            for report in reports.rescue_candidates(cutoff, limit=settings.worker_rescue_limit * 10):
                if tasks.count_active(report.id) == 0:
                    ready.append((report.id, report.is_complete))
                if len(ready) >= settings.worker_rescue_limit:
                    break
            for report_id, _ in ready:
                reports.stamp_handoff(report_id, now)

        rescued = 0
        for report_id, is_complete in ready:
            if is_complete:
                self.scheduler.run_after(0, ACTION_SEND_REPORT_EMAIL, report_id=report_id)
                rescued += 1
                continue
            outcome = self.completion.reconcile(report_id)
            if outcome == "pending":
                if self._enqueue_pending(report_id):
                    rescued += 1
            elif outcome in ("finalized", "page_done"):
                rescued += 1

        result.rescued = rescued
        result.reports = [report_id for report_id, _ in ready]
        if rescued:
            logger.info("tick_rescued_reports", count=rescued, reports=result.reports)
            self.scheduler.run_after(settings.worker_rescue_delay_seconds, ACTION_TICK)
            result.action = "rescued"
        else:
            logger.debug("tick_idle")
            result.action = "idle"
        return result

    def _enqueue_pending(self, report_id: int) -> int:
        with self.database.session() as session:
            report = ReportRepository(session).get_by_id(report_id)
            if report is None or report.is_complete or report.is_canceled:
                return 0
            return TaskRepository(session).enqueue_for_report(
                report,
                report.pending_issues(),
                estimated_tokens=self.settings.llm_estimated_tokens,
                now=self.clock(),
            )
