"""
Fakes and builders shared by the test suite.

Time, scheduling and the three external collaborators (GitHub, the LLM,
email) are replaced by the small classes below.
"""

from datetime import datetime, timedelta

from issue_watcher.api.github_api import IssuePage
from issue_watcher.llm import AnalysisResult
from issue_watcher.models import new_issue_record
from issue_watcher.notifications import SendResult
from issue_watcher.repositories import ReportRepository, TaskRepository


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingScheduler:
    def __init__(self):
        self.calls: list[tuple[float, str, dict]] = []

    def run_after(self, delay_seconds, action, **kwargs):
        self.calls.append((delay_seconds, action, kwargs))

    def actions(self, name: str) -> list[tuple[float, dict]]:
        return [(delay, kwargs) for delay, action, kwargs in self.calls if action == name]

    def clear(self) -> None:
        self.calls.clear()


class FakeAnalyzer:
    """
    Stand-in for LLMClient.

    ``script`` maps an issue id to the outcomes of successive calls; an
    outcome that is an exception instance is raised. Issues without a
    script score ``default_score``.
    """

    def __init__(self, default_score: int = 73):
        self.default_score = default_score
        self.script: dict[str, list] = {}
        self.calls: list[str] = []
        self.before_call = None

    async def analyze_issue(self, keyword, issue):
        self.calls.append(issue["id"])
        if self.before_call is not None:
            self.before_call(issue)
        outcomes = self.script.get(issue["id"])
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return AnalysisResult(
            relevance_score=self.default_score,
            explanation=f"Issue #{issue['number']} mentions {keyword}.",
            matched_terms=[keyword],
            evidence=[issue["title"]],
        )


class FakePageSource:
    """Serves pre-built pages keyed by the ``after`` cursor."""

    def __init__(self):
        self.pages: dict[str | None, IssuePage] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.max_waits: list[float | None] = []
        self.error: Exception | None = None

    def __call__(self, repo_url, page_size=None, after=None, token=None, max_wait=None):
        self.calls.append((repo_url, after))
        self.max_waits.append(max_wait)
        if self.error is not None:
            raise self.error
        return self.pages.get(after, IssuePage())


class FakeEmailClient:
    def __init__(self):
        self.sent: list[dict] = []
        self.failures_left = 0

    def send(self, to, subject, html, text=None):
        if self.failures_left:
            self.failures_left -= 1
            return SendResult(success=False, error="provider unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")


def make_issue(number: int, title: str | None = None, body: str = "", labels=None) -> dict:
    return new_issue_record(
        issue_id=f"I_{number}",
        number=number,
        title=title or f"Issue {number}",
        body=body,
        labels=labels or [],
        created_at="2026-01-02T10:00:00Z",
        url=f"https://github.com/acme/widgets/issues/{number}",
        state="OPEN",
    )


def make_page(numbers, next_cursor: str | None = None) -> IssuePage:
    return IssuePage(
        issues=[make_issue(n) for n in numbers],
        end_cursor=next_cursor or "end",
        has_next_page=next_cursor is not None,
    )


def analyzed(issue: dict, score: int, explanation: str = "Relevant to the keyword.") -> dict:
    updated = dict(issue)
    updated["relevance_score"] = score
    updated["explanation"] = explanation
    return updated


def load_report(database, report_id: int) -> dict | None:
    with database.session() as session:
        report = ReportRepository(session).get_by_id(report_id)
        return report.to_dict() if report else None


def task_statuses(database, report_id: int) -> dict[str, str]:
    with database.session() as session:
        return {t.issue_id: t.status for t in TaskRepository(session).list_for_report(report_id)}
