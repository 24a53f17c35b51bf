"""Tests for report email rendering and the delivery client."""

import json

import httpx

from issue_watcher.notifications import EmailClient, build_subject, render_no_relevant, render_report

from helpers import analyzed, make_issue

REPO = "https://github.com/acme/widgets"


class TestSubject:
    def test_final(self):
        assert build_subject(REPO, is_final=True, sequence=None) == (
            "GIW - GitHub Issues Report for https://github.com/acme/widgets (Final)"
        )

    def test_numbered_partial(self):
        assert build_subject(REPO, is_final=False, sequence=2) == (
            "GIW - GitHub Issues Report for https://github.com/acme/widgets (Partial - 2)"
        )


class TestRenderer:
    def test_report_lists_issues_in_given_order(self):
        issues = [analyzed(make_issue(2, title="Second"), 91), analyzed(make_issue(1, title="First"), 64)]

        html, text = render_report(REPO, "auth", "dev@example.com", issues)

        assert html.index("Second") < html.index("First")
        assert "Dear dev@example.com" in html
        assert "https://github.com/acme/widgets/issues/2" in html
        assert "2026-01-02" in html
        assert "[91] #2 Second" in text

    def test_html_is_escaped(self):
        issues = [analyzed(make_issue(1, title="<script>alert(1)</script>"), 70)]

        html, _ = render_report(REPO, "auth", "dev@example.com", issues)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_link_falls_back_to_repo_url(self):
        issue = analyzed(make_issue(5), 66)
        issue["url"] = None

        html, _ = render_report(REPO, "auth", "dev@example.com", [issue])

        assert "https://github.com/acme/widgets/issues/5" in html

    def test_no_relevant_body(self):
        html = render_no_relevant(REPO, "auth", total_issues=42, threshold=50)

        assert "No Relevant Issues Found" in html
        assert "Total issues analyzed: 42" in html
        assert "above 50" in html


class TestEmailClient:
    def test_successful_send(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "abc-123"})

        client = EmailClient(
            api_key="k", api_url="https://mail.test/send", sender="GIW <n@test>",
            transport=httpx.MockTransport(handler),
        )

        result = client.send("dev@example.com", "Subject", "<p>hi</p>", "hi")

        assert result.success is True
        assert result.message_id == "abc-123"
        assert seen["headers"]["x-api-key"] == "k"
        assert seen["body"]["to"] == ["dev@example.com"]
        assert seen["body"]["html_body"] == "<p>hi</p>"

    def test_api_error_is_reported_not_raised(self):
        client = EmailClient(
            api_key="k", api_url="https://mail.test/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad sender"})),
        )

        result = client.send("dev@example.com", "Subject", "<p>hi</p>")

        assert result.success is False
        assert "422" in result.error
        assert "bad sender" in result.error

    def test_transport_error_is_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = EmailClient(api_key="k", api_url="https://mail.test/send", transport=httpx.MockTransport(handler))

        result = client.send("dev@example.com", "Subject", "<p>hi</p>")

        assert result.success is False

    def test_missing_key_fails_fast(self, monkeypatch):
        monkeypatch.setattr(
            "issue_watcher.notifications.email_client.get_settings",
            lambda: type("S", (), {
                "email_api_key": None,
                "email_api_url": "https://mail.test/send",
                "email_from": "n@test",
                "email_timeout_seconds": 5,
            })(),
        )

        result = EmailClient().send("dev@example.com", "Subject", "<p>hi</p>")

        assert result.success is False
        assert "EMAIL_API_KEY" in result.error
