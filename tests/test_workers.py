"""Tests for the Celery glue: scheduler, beat schedule and task wrappers."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from issue_watcher.config import Settings
from issue_watcher.constants import ACTION_PROCESS_NEXT_PAGE, ACTION_TICK
from issue_watcher.exceptions import (
    GitHubAuthError,
    GitHubRateLimitError,
    ReportNotFoundError,
)
from issue_watcher.services import EmailDecision, PageResult
from issue_watcher.timeutils import utcnow
from workers import schedules
from workers.scheduler import TASK_NAMES, CeleryScheduler
from workers.tasks import report_tasks


class TestCeleryScheduler:
    def test_sends_task_by_name_with_countdown(self):
        app = MagicMock()

        CeleryScheduler(app).run_after(2.0, ACTION_TICK)
        CeleryScheduler(app).run_after(0, ACTION_PROCESS_NEXT_PAGE, report_id=7, expected_cursor="c1")

        assert app.send_task.call_args_list[0].args == ("workers.tasks.analysis_tasks.tick",)
        assert app.send_task.call_args_list[0].kwargs == {"kwargs": {}, "countdown": 2.0}
        assert app.send_task.call_args_list[1].kwargs == {
            "kwargs": {"report_id": 7, "expected_cursor": "c1"},
            "countdown": 0.0,
        }

    def test_negative_delay_is_clamped(self):
        app = MagicMock()

        CeleryScheduler(app).run_after(-3, ACTION_TICK)

        assert app.send_task.call_args.kwargs["countdown"] == 0.0

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            CeleryScheduler(MagicMock()).run_after(0, "reticulate_splines")

    def test_every_action_has_a_registered_task(self):
        from workers.celery_app import celery_app

        for name in TASK_NAMES.values():
            assert name in celery_app.tasks


class TestBeatSchedule:
    def test_schedule_entries(self):
        schedule = schedules.get_beat_schedule()

        assert schedule["rescue-tick-every-minute"]["task"] == TASK_NAMES[ACTION_TICK]
        assert schedule["rescue-tick-every-minute"]["schedule"] == 60.0
        assert {entry["task"] for entry in schedule.values()} >= {
            "workers.tasks.maintenance_tasks.requeue_stale_tasks",
            "workers.tasks.maintenance_tasks.vacuum_tasks",
            "workers.tasks.maintenance_tasks.vacuum_rate_limits",
        }

    def test_applied_only_when_enabled(self, monkeypatch):
        app = MagicMock()
        app.conf.beat_schedule = None

        monkeypatch.setattr(schedules, "settings", Settings(_env_file=None, enable_scheduler=False))
        schedules.apply_beat_schedule(app)
        assert app.conf.beat_schedule is None

        monkeypatch.setattr(schedules, "settings", Settings(_env_file=None, enable_scheduler=True))
        schedules.apply_beat_schedule(app)
        assert "rescue-tick-every-minute" in app.conf.beat_schedule


class TestReportTasks:
    def test_next_page_result(self, monkeypatch):
        service = MagicMock()
        service.return_value.fetch_and_enqueue_next_page.return_value = PageResult("appended", 100, 98, "c2")
        monkeypatch.setattr(report_tasks, "PaginationService", service)

        result = report_tasks.process_next_page_task.run(5, "c1")

        assert result == {
            "report_id": 5,
            "action": "appended",
            "fetched": 100,
            "enqueued": 98,
            "has_next_page": True,
        }
        service.return_value.fetch_and_enqueue_next_page.assert_called_once_with(5, expected_cursor="c1")

    def test_next_page_auth_failure_is_not_retried(self, monkeypatch):
        service = MagicMock()
        service.return_value.fetch_and_enqueue_next_page.side_effect = GitHubAuthError("bad token")
        monkeypatch.setattr(report_tasks, "PaginationService", service)
        retry = MagicMock()
        monkeypatch.setattr(report_tasks.process_next_page_task, "retry", retry)

        result = report_tasks.process_next_page_task.run(5, "c1")

        assert result["action"] == "failed"
        retry.assert_not_called()

    def test_next_page_rate_limit_retries_after_reset(self, monkeypatch):
        service = MagicMock()
        service.return_value.fetch_and_enqueue_next_page.side_effect = GitHubRateLimitError(
            "slow down", reset_at=utcnow() + timedelta(seconds=120)
        )
        monkeypatch.setattr(report_tasks, "PaginationService", service)
        retry = MagicMock()
        monkeypatch.setattr(report_tasks.process_next_page_task, "retry", retry)

        report_tasks.process_next_page_task.run(5, "c1")

        countdown = retry.call_args.kwargs["countdown"]
        assert 100 <= countdown <= 121

    def test_rate_limit_countdown_is_capped(self):
        far = GitHubRateLimitError("slow down", reset_at=utcnow() + timedelta(hours=3))
        unknown = GitHubRateLimitError("slow down")

        assert report_tasks._rate_limit_countdown(far, 60) == report_tasks.MAX_RATE_LIMIT_COUNTDOWN
        assert report_tasks._rate_limit_countdown(unknown, 60) == 60

    def test_email_for_missing_report(self, monkeypatch):
        service = MagicMock()
        service.return_value.send_report_email.side_effect = ReportNotFoundError(9)
        monkeypatch.setattr(report_tasks, "NotificationService", service)

        assert report_tasks.send_report_email_task.run(9) == {"report_id": 9, "action": "missing"}

    def test_email_decision_is_returned(self, monkeypatch):
        service = MagicMock()
        service.return_value.send_report_email.return_value = EmailDecision("sent_final", 4, "subject")
        monkeypatch.setattr(report_tasks, "NotificationService", service)

        result = report_tasks.send_report_email_task.run(9)

        assert result == {"report_id": 9, "action": "sent_final", "relevant": 4}
        service.return_value.send_report_email.assert_called_once_with(9, page_cursor=None)
