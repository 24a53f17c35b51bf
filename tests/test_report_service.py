import pytest

from issue_watcher.constants import ACTION_TICK, TASK_CANCELED, TASK_QUEUED
from issue_watcher.exceptions import (
    GitHubAuthError,
    InvalidKeywordError,
    InvalidRepositoryURLError,
    ReportNotFoundError,
)
from issue_watcher.repositories import ReportRepository, TaskRepository
from issue_watcher.services import ReportService

from helpers import analyzed, load_report, make_issue, make_page, task_statuses

REPO = "https://github.com/acme/widgets"


@pytest.fixture
def service(database, settings, clock, scheduler, page_source):
    return ReportService(scheduler, page_source, database=database, settings=settings, clock=clock)


class TestSubmit:
    def test_new_report_fetches_first_page_and_queues_analysis(self, service, page_source, scheduler, database):
        page_source.pages[None] = make_page([1, 2, 3], next_cursor="c1")

        submission = service.submit("Dev@Example.com", REPO + "/", "  Auth ")

        report = submission.report
        assert submission.status == "created"
        assert report["repo_url"] == REPO
        assert report["keyword"] == "auth"
        assert report["cursor"] == "c1"
        assert report["issue_count"] == 3
        assert report["pending_count"] == 3
        assert report["request_counter"] == 1
        assert page_source.calls == [(REPO, None)]
        assert page_source.max_waits == [0]
        assert set(task_statuses(database, report["id"]).values()) == {TASK_QUEUED}
        assert scheduler.actions(ACTION_TICK) == [(0, {})]

    def test_recent_complete_report_is_reused(self, service, create_report, page_source, database):
        report_id = create_report(issues=[analyzed(make_issue(1), 80)], is_complete=True)

        submission = service.submit("dev@example.com", REPO, "auth")

        assert submission.status == "cached"
        assert submission.report["id"] == report_id
        assert submission.report["request_counter"] == 1
        assert page_source.calls == []

    def test_open_report_is_not_restarted(self, service, create_report, page_source, scheduler):
        report_id = create_report(issues=[make_issue(1)], cursor="c1")

        submission = service.submit("dev@example.com", REPO, "AUTH")

        assert submission.status == "in_progress"
        assert submission.report["id"] == report_id
        assert page_source.calls == []
        assert scheduler.actions(ACTION_TICK) == [(0, {})]

    def test_stale_complete_report_is_refreshed(self, service, create_report, page_source, clock, database):
        report_id = create_report(issues=[analyzed(make_issue(1), 80)], is_complete=True, final_email_at=clock())
        clock.advance(2 * 3600)
        page_source.pages[None] = make_page([1, 7])

        submission = service.submit("dev@example.com", REPO, "auth")

        report = load_report(database, report_id)
        assert submission.status == "refreshed"
        assert report["is_complete"] is False
        assert report["final_email_at"] is None
        assert [issue["id"] for issue in report["issues"]] == ["I_1", "I_7"]
        assert report["pending_count"] == 2

    def test_canceled_report_is_restarted_without_old_tasks(self, service, create_report, page_source, database):
        report_id = create_report(issues=[make_issue(1), make_issue(2)], cursor="c1")
        service.cancel_report(report_id)
        page_source.pages[None] = make_page([3])

        submission = service.submit("dev@example.com", REPO, "auth")

        assert submission.status == "refreshed"
        assert submission.report["is_canceled"] is False
        assert task_statuses(database, report_id) == {"I_3": TASK_QUEUED}

    @pytest.mark.parametrize(
        "url", ["not a url", "https://github.com/acme", "https://example.com/acme/widgets"]
    )
    def test_invalid_repository_url(self, service, url, database):
        with pytest.raises(InvalidRepositoryURLError):
            service.submit("dev@example.com", url, "auth")

        assert service.list_reports("dev@example.com") == []

    def test_blank_keyword(self, service):
        with pytest.raises(InvalidKeywordError):
            service.submit("dev@example.com", REPO, "   ")

    def test_first_page_failure_cancels_the_report(self, service, page_source, database):
        page_source.error = GitHubAuthError("bad credentials")

        with pytest.raises(GitHubAuthError):
            service.submit("dev@example.com", REPO, "auth")

        [summary] = service.list_reports("dev@example.com")
        assert summary["is_canceled"] is True


class TestReads:
    def test_reports_are_private_to_their_owner(self, service, create_report):
        report_id = create_report(email="owner@example.com")

        assert service.get_report(report_id, "OWNER@example.com")["id"] == report_id
        with pytest.raises(ReportNotFoundError):
            service.get_report(report_id, "someone@example.com")

    def test_list_omits_issue_payloads(self, service, create_report, clock):
        create_report(issues=[make_issue(1)])
        clock.advance(1)
        newer = create_report(keyword="cache")

        reports = service.list_reports("dev@example.com")

        assert [report["id"] for report in reports][0] == newer
        assert all("issues" not in report for report in reports)

    def test_workload(self, service, create_report, database):
        report_id = create_report(issues=[make_issue(n) for n in range(1, 5)])
        with database.session() as session:
            tasks = TaskRepository(session)
            tasks.mark_running([tasks.list_for_report(report_id)[0].id])

        assert service.workload("dev@example.com") == {"open_reports": 1, "queued": 3, "running": 1}
        assert service.workload("nobody@example.com") == {"open_reports": 0, "queued": 0, "running": 0}

    def test_debug_report(self, service, create_report, database):
        issues = [analyzed(make_issue(1), 90)] + [make_issue(n) for n in range(2, 9)]
        report_id = create_report(issues=issues, cursor="c1")

        debug = service.debug_report(report_id)

        assert debug["total_issues"] == 8
        assert debug["pending"] == 7
        assert debug["cursor"] == "c1"
        assert debug["has_relevant"] is True
        assert [issue["id"] for issue in debug["pending_sample"]] == ["I_2", "I_3", "I_4", "I_5", "I_6"]
        assert debug["tasks"] == {"queued": 7}


class TestCancelAndDelete:
    def test_cancel_stops_queued_work(self, service, create_report, database):
        report_id = create_report(issues=[make_issue(1), make_issue(2)], cursor="c1")

        report = service.cancel_report(report_id, "dev@example.com")

        assert report["is_canceled"] is True
        assert report["cursor"] is None
        assert set(task_statuses(database, report_id).values()) == {TASK_CANCELED}

    def test_delete_removes_report_and_tasks(self, service, create_report, database):
        report_id = create_report(issues=[make_issue(1), make_issue(2)])

        assert service.delete_report(report_id, "dev@example.com") == 2

        with pytest.raises(ReportNotFoundError):
            service.get_report(report_id)
        with database.session() as session:
            assert TaskRepository(session).count(report_id=report_id) == 0

    def test_delete_of_someone_elses_report(self, service, create_report, database):
        report_id = create_report(email="owner@example.com")

        with pytest.raises(ReportNotFoundError):
            service.delete_report(report_id, "intruder@example.com")

        assert load_report(database, report_id) is not None


class TestOperatorHelpers:
    def test_requeue_error_tasks(self, service, create_report, database, scheduler):
        report_id = create_report(issues=[make_issue(1)])
        with database.session() as session:
            tasks = TaskRepository(session)
            task_id = tasks.list_for_report(report_id)[0].id
            tasks.mark_running([task_id])
            tasks.mark_requeue_or_error(task_id, 3, "boom", max_attempts=3)

        assert service.requeue_error_tasks(report_id) == 1
        assert task_statuses(database, report_id) == {"I_1": TASK_QUEUED}
        assert scheduler.actions(ACTION_TICK) == [(0, {})]

    def test_enqueue_missing_tasks(self, service, create_report, database, scheduler):
        report_id = create_report(issues=[make_issue(1), make_issue(2)], enqueue=False)

        assert service.enqueue_missing_tasks(report_id) == 2
        assert service.enqueue_missing_tasks(report_id) == 0
        assert scheduler.actions(ACTION_TICK) == [(0, {})]

    def test_enqueue_missing_tasks_ignores_finished_reports(self, service, create_report, database):
        report_id = create_report(issues=[make_issue(1)], enqueue=False)
        with database.session() as session:
            ReportRepository(session).cancel(report_id)

        assert service.enqueue_missing_tasks(report_id) == 0
