from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import get_report_service
from backend.app.main import create_app
from issue_watcher.services import ReportService


@pytest.fixture
def report_service(database, settings, clock, scheduler, page_source) -> ReportService:
    return ReportService(scheduler, page_source, database=database, settings=settings, clock=clock)


@pytest.fixture
def client(report_service) -> Iterator[TestClient]:
    app = create_app()
    app.dependency_overrides[get_report_service] = lambda: report_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
