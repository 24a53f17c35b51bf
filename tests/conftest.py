"""
Pytest fixtures for Issue Watcher tests.

Every test that touches the database gets a fresh in-memory SQLite
database behind the process-wide ``DatabaseManager``. The fakes live in
``helpers``.
"""

from datetime import datetime

import pytest

from issue_watcher.api.github_api import reset_rate_limit_state
from issue_watcher.config import Settings
from issue_watcher.db import db
from issue_watcher.repositories import ReportRepository, TaskRepository, UserRepository

from helpers import FakeAnalyzer, FakeClock, FakeEmailClient, FakePageSource, RecordingScheduler


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        github_token="test-token",
        llm_api_key="test-llm-key",
        email_api_key="test-email-key",
        llm_requests_per_minute=30,
        worker_max_concurrency=3,
        per_owner_max_running=20,
        per_owner_max_in_batch=3,
    )


@pytest.fixture
def database():
    """Fresh in-memory database for each test."""
    db.reset()
    db.initialize("sqlite://")
    db.create_all_tables()
    yield db
    db.drop_all_tables()
    db.reset()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 12, 0, 30))


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def page_source():
    return FakePageSource()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture(autouse=True)
def _reset_github_rate_limit():
    reset_rate_limit_state()
    yield
    reset_rate_limit_state()


@pytest.fixture
def create_report(database, clock):
    """
    Factory inserting a report (and optionally its queued tasks).

    Returns the new report id.
    """

    def _create(
        email: str = "dev@example.com",
        issues=None,
        cursor: str | None = None,
        keyword: str = "auth",
        enqueue: bool = True,
        **fields,
    ) -> int:
        issues = list(issues or [])
        with database.session() as session:
            user = UserRepository(session).get_or_create(email)
            report = ReportRepository(session).create(
                user_id=user.id,
                repo_url="https://github.com/acme/widgets",
                keyword=keyword,
                issues=issues,
                cursor=cursor,
                created_at=clock(),
                last_fetched_at=clock(),
                **fields,
            )
            if enqueue:
                pending = [issue for issue in issues if not issue["explanation"]]
                TaskRepository(session).enqueue_for_report(report, pending, estimated_tokens=1300, now=clock())
            return report.id

    return _create
