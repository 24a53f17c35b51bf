"""
Database access shared by the API, the Celery workers and beat.

The queue, the worker lock and the rate-limit buckets all live in this
database, so every process must point at the same DATABASE_URL. SQLite is
fine for tests and a single host; use PostgreSQL once several worker
hosts share the queue.

Usage:
    from issue_watcher.db import db

    db.initialize()
    with db.session() as session:
        report = session.get(Report, 1)
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import Settings, get_settings
from .models.base import Base

SQLITE_BUSY_TIMEOUT_MS = 5000


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def _engine_options(url: str, settings: Settings) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        return {
            "poolclass": QueuePool,
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_pre_ping": settings.db_pool_pre_ping,
        }
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if _is_memory_sqlite(url):
        # one shared connection, otherwise each checkout sees an empty database
        options["poolclass"] = StaticPool
    return options


def _install_sqlite_pragmas(engine: Engine, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


class DatabaseManager:
    """Process-wide engine and session factory."""

    _instance: Optional["DatabaseManager"] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
            cls._instance.engine = None
        return cls._instance

    def initialize(self, database_url: str | None = None) -> None:
        """Create the engine. Later calls are no-ops until ``reset``."""
        if self._initialized:
            return

        settings = get_settings()
        url = database_url or settings.database_url

        self.engine = create_engine(url, echo=settings.debug, **_engine_options(url, settings))
        if url.startswith("sqlite"):
            _install_sqlite_pragmas(self.engine, wal=not _is_memory_sqlite(url))

        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def create_all_tables(self) -> None:
        """Create tables straight from the models. Deployments run alembic instead."""
        self._require_engine()
        import issue_watcher.models  # noqa: F401  registers mappers

        Base.metadata.create_all(bind=self.engine)

    def drop_all_tables(self) -> None:
        self._require_engine()
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """One unit of work: commit on success, roll back on any error."""
        self._require_engine()
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> dict:
        """``{"healthy", "dialect", "latency_ms", "error"}`` from a ``SELECT 1``."""
        if not self._initialized:
            return {"healthy": False, "dialect": None, "latency_ms": 0, "error": "not initialized"}

        started = time.perf_counter()
        error = None
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            error = str(exc)
        return {
            "healthy": error is None,
            "dialect": self.engine.dialect.name,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": error,
        }

    def reset(self) -> None:
        """Dispose the engine so the next ``initialize`` can point elsewhere."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
        self._initialized = False

    def _require_engine(self) -> None:
        if not self._initialized:
            raise RuntimeError("Database not initialized; call db.initialize() first")


db = DatabaseManager()


__all__ = ["Base", "DatabaseManager", "db"]
