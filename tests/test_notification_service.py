import pytest

from issue_watcher.constants import ACTION_PROCESS_NEXT_PAGE
from issue_watcher.exceptions import EmailDeliveryError, ReportNotFoundError
from issue_watcher.services import CompletionService, NotificationService

from helpers import analyzed, load_report, make_issue


@pytest.fixture
def notifications(database, settings, clock, scheduler, email_client):
    return NotificationService(scheduler, email_client, database=database, settings=settings, clock=clock)


class TestPartialEmails:
    def test_partial_email_then_next_page(self, notifications, create_report, email_client, scheduler, database):
        issues = [analyzed(make_issue(1), 42), analyzed(make_issue(2), 88), analyzed(make_issue(3), 61)]
        report_id = create_report(issues=issues, cursor="c1")

        decision = notifications.send_report_email(report_id, page_cursor="c1")

        assert decision.action == "sent_partial"
        assert decision.relevant == 2
        assert len(email_client.sent) == 1
        sent = email_client.sent[0]
        assert sent["to"] == "dev@example.com"
        assert sent["subject"].endswith("(Partial - 1)")
        assert sent["html"].index("Issue 2") < sent["html"].index("Issue 3")
        assert "Issue 1<" not in sent["html"]
        report = load_report(database, report_id)
        assert report["last_partial_cursor"] == "c1"
        assert report["emails_sent"] == 1
        assert scheduler.actions(ACTION_PROCESS_NEXT_PAGE) == [(0, {"report_id": report_id, "expected_cursor": "c1"})]

    def test_no_relevant_issues_skips_straight_to_next_page(self, notifications, create_report, email_client, scheduler):
        report_id = create_report(issues=[analyzed(make_issue(1), 12)], cursor="c1")

        decision = notifications.send_report_email(report_id)

        assert decision.action == "next_page"
        assert email_client.sent == []
        assert scheduler.actions(ACTION_PROCESS_NEXT_PAGE) == [(0, {"report_id": report_id, "expected_cursor": "c1"})]

    def test_same_page_is_emailed_once(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 77)], cursor="c1")

        first = notifications.send_report_email(report_id, page_cursor="c1")
        second = notifications.send_report_email(report_id, page_cursor="c1")

        assert (first.action, second.action) == ("sent_partial", "skipped_duplicate")
        assert len(email_client.sent) == 1

    def test_next_page_gets_its_own_partial(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 77)], cursor="c1")

        notifications.send_report_email(report_id, page_cursor="c1")
        notifications.send_report_email(report_id, page_cursor="c2")

        assert email_client.sent[0]["subject"].endswith("(Partial - 1)")
        assert email_client.sent[1]["subject"].endswith("(Partial - 2)")

    def test_delivery_failure_releases_the_claim(self, notifications, create_report, email_client, database, settings):
        report_id = create_report(issues=[analyzed(make_issue(1), 77)], cursor="c1")
        email_client.failures_left = settings.email_max_attempts

        with pytest.raises(EmailDeliveryError):
            notifications.send_report_email(report_id, page_cursor="c1")

        assert load_report(database, report_id)["last_partial_cursor"] is None
        retried = notifications.send_report_email(report_id, page_cursor="c1")
        assert retried.action == "sent_partial"
        assert len(email_client.sent) == 1

    def test_transient_failure_is_retried_inline(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 77)], cursor="c1")
        email_client.failures_left = 1

        assert notifications.send_report_email(report_id, page_cursor="c1").action == "sent_partial"
        assert len(email_client.sent) == 1


class TestFinalEmails:
    def test_final_email_lists_relevant_issues(self, notifications, create_report, email_client, database):
        report_id = create_report(issues=[analyzed(make_issue(1), 93)], is_complete=True)

        decision = notifications.send_report_email(report_id)

        assert decision.action == "sent_final"
        assert email_client.sent[0]["subject"] == (
            "GIW - GitHub Issues Report for https://github.com/acme/widgets (Final)"
        )
        assert load_report(database, report_id)["final_email_at"] is not None

    def test_final_after_partials_is_numbered(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 93)], is_complete=True, emails_sent=2)

        notifications.send_report_email(report_id)

        assert email_client.sent[0]["subject"].endswith("(Final - 3)")

    def test_final_without_relevant_issues_says_so(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 8)], is_complete=True)

        decision = notifications.send_report_email(report_id)

        assert decision.action == "sent_final"
        assert decision.relevant == 0
        assert "No Relevant Issues Found" in email_client.sent[0]["html"]

    def test_final_email_is_sent_at_most_once(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 93)], is_complete=True)

        notifications.send_report_email(report_id)
        again = notifications.send_report_email(report_id)

        assert again.action == "skipped_duplicate"
        assert len(email_client.sent) == 1

    def test_canceled_report_gets_no_email(self, notifications, create_report, email_client):
        report_id = create_report(issues=[analyzed(make_issue(1), 93)], is_complete=True, is_canceled=True)

        assert notifications.send_report_email(report_id).action == "skipped_canceled"
        assert email_client.sent == []

    def test_unknown_report(self, notifications, database):
        with pytest.raises(ReportNotFoundError):
            notifications.send_report_email(12345)


def test_racing_completion_sends_one_final_email(database, settings, clock, scheduler, email_client, create_report):
    """Two tick instances reconcile the same drained report and both try to email."""
    report_id = create_report(issues=[analyzed(make_issue(1), 93)])
    completion_a = CompletionService(scheduler, database=database, settings=settings, clock=clock)
    completion_b = CompletionService(scheduler, database=database, settings=settings, clock=clock)
    notifications = NotificationService(scheduler, email_client, database=database, settings=settings, clock=clock)

    outcomes = sorted([completion_a.reconcile(report_id), completion_b.reconcile(report_id)])
    decisions = sorted(
        notifications.send_report_email(report_id).action for _ in range(2)
    )

    assert outcomes == ["complete", "finalized"]
    assert decisions == ["sent_final", "skipped_duplicate"]
    assert len(email_client.sent) == 1
