"""
Structured logging for the API, the Celery workers and the services.

Every process calls ``configure_logging`` once. Development gets colored
console output; anything else gets one JSON object per line. Request and
task identifiers travel through structlog's contextvars so that service
code never has to pass them around.
"""

import logging
import os
import sys
import time
import uuid
from collections.abc import Callable, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from functools import wraps
from typing import Any, TypeVar

import structlog
from structlog.contextvars import bound_contextvars
from structlog.types import Processor

F = TypeVar("F", bound=Callable[..., Any])

REQUEST_ID_HEADER = b"x-request-id"

_configured = False


def _use_console_renderer() -> bool:
    from .config import get_settings

    return get_settings().debug or os.getenv("ENV", "development") == "development"


def _add_service(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]:
    event_dict.setdefault("service", "issue_watcher")
    return event_dict


def get_processors(console: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _add_service,
    ]
    if console:
        renderer: Processor = structlog.dev.ConsoleRenderer(
            colors=True, exception_formatter=structlog.dev.plain_traceback
        )
        return processors + [renderer]
    return processors + [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging(level: str = "INFO", console: bool | None = None) -> None:
    """Route stdlib logging and structlog to stdout. Later calls are ignored."""
    global _configured
    if _configured:
        return
    _configured = True

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # httpx logs every request at INFO; the clients log their own outcome.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=get_processors(_use_console_renderer() if console is None else console),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Attach ``fields`` to every log line emitted inside the block.

    Usage:
        with log_context(report_id=12):
            logger.info("page_fetched")  # carries report_id
    """
    with bound_contextvars(**fields):
        yield


def log_job(job: str, logger: structlog.stdlib.BoundLogger | None = None) -> Callable[[F], F]:
    """
    Log the outcome and duration of a housekeeping job.

    A job returning a dict has its keys added to the completion line, so a
    vacuum reports how many rows it deleted.
    """

    def decorator(func: F) -> F:
        job_logger = logger or get_logger(func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                job_logger.error(
                    "job_failed",
                    job=job,
                    duration_seconds=round(time.perf_counter() - started, 3),
                    error=str(exc),
                )
                raise
            details = result if isinstance(result, dict) else {}
            job_logger.info(
                "job_complete",
                job=job,
                duration_seconds=round(time.perf_counter() - started, 3),
                **details,
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


class RequestLoggingMiddleware:
    """
    ASGI middleware logging one line per HTTP request.

    An incoming ``X-Request-ID`` is reused, otherwise a short one is made
    up. Either way it is bound for the duration of the request and echoed
    back on the response.
    """

    def __init__(self, app):
        self.app = app
        self.logger = _LazyLogger("http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        request_id = headers.get(REQUEST_ID_HEADER, b"").decode("latin-1") or uuid.uuid4().hex[:8]
        status_code = 500
        started = time.perf_counter()

        async def send_with_request_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message.setdefault("headers", [])
                message["headers"] = list(message["headers"]) + [
                    (REQUEST_ID_HEADER, request_id.encode("latin-1"))
                ]
            await send(message)

        with bound_contextvars(request_id=request_id):
            try:
                await self.app(scope, receive, send_with_request_id)
            finally:
                if status_code >= 500:
                    log = self.logger.error
                elif status_code >= 400:
                    log = self.logger.warning
                else:
                    log = self.logger.info
                log(
                    "request_complete",
                    method=scope.get("method", ""),
                    path=scope.get("path", ""),
                    status_code=status_code,
                    duration_seconds=round(time.perf_counter() - started, 3),
                )


def configure_celery_logging() -> None:
    """Bind task identity (and the report it works on) around every Celery task."""
    from celery.signals import task_failure, task_postrun, task_prerun

    logger = get_logger("celery.tasks")

    @task_prerun.connect(weak=False)
    def bind_task(task_id, task, args, kwargs, **extra):
        structlog.contextvars.clear_contextvars()
        fields = {"task_id": task_id, "task_name": task.name}
        if kwargs and "report_id" in kwargs:
            fields["report_id"] = kwargs["report_id"]
        structlog.contextvars.bind_contextvars(**fields)
        logger.debug("task_started")

    @task_failure.connect(weak=False)
    def log_failure(task_id, exception, args, kwargs, traceback, einfo, **extra):
        logger.error("task_failed", error=str(exception), error_type=type(exception).__name__)

    @task_postrun.connect(weak=False)
    def unbind_task(task_id, task, args, kwargs, retval, state, **extra):
        logger.debug("task_finished", state=state)
        structlog.contextvars.clear_contextvars()


class _LazyLogger:
    """Defers ``get_logger`` (and so settings loading) until the first log call."""

    def __init__(self, name: str):
        self._name = name
        self._logger: structlog.stdlib.BoundLogger | None = None

    def __getattr__(self, name: str):
        if self._logger is None:
            self._logger = get_logger(self._name)
        return getattr(self._logger, name)


llm_logger = _LazyLogger("llm")
email_logger = _LazyLogger("email")
queue_logger = _LazyLogger("queue")
worker_logger = _LazyLogger("worker")


__all__ = [
    "configure_logging",
    "get_logger",
    "log_context",
    "log_job",
    "RequestLoggingMiddleware",
    "configure_celery_logging",
    "llm_logger",
    "email_logger",
    "queue_logger",
    "worker_logger",
]
