"""
Fixed-window rate limiter for LLM calls, stored in the database.

Bucket identity is derived from wall-clock time alone
(``floor(epoch_seconds / window_seconds)``), so every process computes the
same key without coordination. Counters only grow; the worker lock keeps
concurrent consumers from racing past a ceiling.

Usage:
    limiter = RateLimiter()
    quota = limiter.get_quota(estimate_tokens=1300)
    if quota.ok:
        limiter.consume(requests=2, tokens=2600)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from issue_watcher.config import Settings, get_settings
from issue_watcher.db import DatabaseManager, db
from issue_watcher.logging import get_logger
from issue_watcher.models import RateLimitBucket
from issue_watcher.timeutils import EPOCH, Clock, to_epoch_seconds, utcnow

logger = get_logger("rate_limiter")


@dataclass(frozen=True)
class Window:
    prefix: str
    seconds: int
    max_requests: Optional[int]
    max_tokens: Optional[int] = None

    def index(self, now: datetime) -> int:
        return int(to_epoch_seconds(now) // self.seconds)

    def key(self, now: datetime) -> str:
        return f"{self.prefix}:{self.index(now)}"

    def start(self, now: datetime) -> datetime:
        return EPOCH + timedelta(seconds=self.index(now) * self.seconds)


@dataclass(frozen=True)
class Quota:
    ok: bool
    max_allowed_requests: int


def windows_from_settings(settings: Settings) -> List[Window]:
    """Minute window always; hour and day only when a ceiling is configured."""
    windows = [
        Window("m", 60, settings.llm_requests_per_minute, settings.llm_tokens_per_minute),
    ]
    if settings.llm_requests_per_hour is not None:
        windows.append(Window("h", 3600, settings.llm_requests_per_hour))
    if settings.llm_requests_per_day is not None:
        windows.append(Window("d", 86400, settings.llm_requests_per_day))
    return windows


class RateLimiter:
    def __init__(
        self,
        database: DatabaseManager = db,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
        windows: Optional[List[Window]] = None,
    ):
        self.database = database
        self.settings = settings or get_settings()
        self.clock = clock
        self.windows = windows or windows_from_settings(self.settings)
        self.retention = timedelta(minutes=self.settings.rate_limit_retention_minutes)

    def get_quota(self, estimate_tokens: int = 0) -> Quota:
        """
        Requests still allowed right now across every window.

        Never fails for over-asking callers; it reports the real allowance
        and the caller throttles itself to it.
        """
        now = self.clock()
        allowed: Optional[int] = None

        with self.database.session() as session:
            for window in self.windows:
                bucket = session.scalar(
                    select(RateLimitBucket).where(RateLimitBucket.bucket == window.key(now))
                )
                used_requests = bucket.requests if bucket else 0
                used_tokens = bucket.tokens if bucket else 0

                if window.max_requests is not None:
                    remaining = max(0, window.max_requests - used_requests)
                    allowed = remaining if allowed is None else min(allowed, remaining)

                if window.max_tokens is not None and estimate_tokens > 0:
                    by_tokens = max(0, window.max_tokens - used_tokens) // estimate_tokens
                    allowed = by_tokens if allowed is None else min(allowed, by_tokens)

        max_allowed = allowed if allowed is not None else 0
        return Quota(ok=max_allowed > 0, max_allowed_requests=max_allowed)

    def consume(self, requests: int, tokens: int = 0) -> None:
        """Add usage to the current bucket of every window, creating buckets as needed."""
        if requests < 0 or tokens < 0:
            raise ValueError("consumption must be non-negative")
        if requests == 0 and tokens == 0:
            return

        now = self.clock()
        with self.database.session() as session:
            for window in self.windows:
                key = window.key(now)
                if self._increment(session, key, requests, tokens, now):
                    continue
                try:
                    with session.begin_nested():
                        session.add(
                            RateLimitBucket(
                                bucket=key,
                                window=window.prefix,
                                window_start=window.start(now),
                                requests=requests,
                                tokens=tokens,
                                updated_at=now,
                            )
                        )
                except IntegrityError:
                    # another process created the bucket first
                    self._increment(session, key, requests, tokens, now)

        logger.debug("rate_limit_consumed", requests=requests, tokens=tokens)

    @staticmethod
    def _increment(session, key: str, requests: int, tokens: int, now: datetime) -> bool:
        stmt = (
            update(RateLimitBucket)
            .where(RateLimitBucket.bucket == key)
            .values(
                requests=RateLimitBucket.requests + requests,
                tokens=RateLimitBucket.tokens + tokens,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount > 0

    def vacuum(self) -> int:
        """Delete buckets whose window ended more than the retention period ago."""
        now = self.clock()
        deleted = 0
        with self.database.session() as session:
            for window in self.windows:
                cutoff = now - self.retention - timedelta(seconds=window.seconds)
                result = session.execute(
                    delete(RateLimitBucket).where(
                        RateLimitBucket.window == window.prefix,
                        RateLimitBucket.window_start < cutoff,
                    )
                )
                deleted += result.rowcount
        if deleted:
            logger.info("rate_limit_buckets_vacuumed", deleted=deleted)
        return deleted
