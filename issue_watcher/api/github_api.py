"""GitHub GraphQL client for paging through a repository's issues."""

import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests  # type: ignore[import-untyped]

from issue_watcher.config import get_settings
from issue_watcher.constants import (
    GITHUB_GRAPHQL_ENDPOINT,
    GITHUB_LABELS_PER_ISSUE,
    GITHUB_LOW_RATE_LIMIT,
    GITHUB_REPO_URL_PATTERN,
)
from issue_watcher.exceptions import (
    GitHubAuthError,
    GitHubError,
    GitHubRateLimitError,
    InvalidRepositoryURLError,
    RepositoryNotFoundError,
)
from issue_watcher.logging import get_logger
from issue_watcher.models.report import new_issue_record
from issue_watcher.timeutils import parse_github_timestamp, to_epoch_seconds

logger = get_logger("github")

# Rate limit state reported by the last GraphQL response (module-level, per process)
_rate_limit: dict[str, Any] = {"remaining": 5000, "reset": 0.0}
_rate_limit_lock = threading.Lock()

_REPO_URL_RE = re.compile(GITHUB_REPO_URL_PATTERN)

ISSUES_QUERY = f"""
query ($owner: String!, $repo: String!, $pageSize: Int!, $after: String) {{
    repository(owner: $owner, name: $repo) {{
        issues(first: $pageSize, states: [OPEN, CLOSED], after: $after) {{
            nodes {{
                id
                number
                title
                body
                url
                state
                createdAt
                labels(first: {GITHUB_LABELS_PER_ISSUE}) {{ nodes {{ name }} }}
            }}
            pageInfo {{ endCursor hasNextPage }}
        }}
    }}
    rateLimit {{ remaining resetAt }}
}}
"""


@dataclass
class RateLimitInfo:
    remaining: int
    reset_at: datetime | None


@dataclass
class IssuePage:
    """One page of issues in the embedded-issue shape stored on reports."""

    issues: list[dict[str, Any]] = field(default_factory=list)
    end_cursor: str | None = None
    has_next_page: bool = False
    rate_limit: RateLimitInfo | None = None

    @property
    def next_cursor(self) -> str | None:
        return self.end_cursor if self.has_next_page else None


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """
    Split ``https://github.com/<owner>/<repo>`` into (owner, repo).

    Raises:
        InvalidRepositoryURLError: for anything else, including trailing paths
    """
    match = _REPO_URL_RE.match((repo_url or "").strip())
    if not match:
        raise InvalidRepositoryURLError(repo_url)
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def _get_headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/json",
        "User-Agent": "IssueWatcher/1.0",
        "Authorization": f"bearer {token}",
    }


def _update_rate_limit(payload: dict) -> RateLimitInfo | None:
    """Update rate limit tracking from the ``rateLimit`` field of a response."""
    info = (payload.get("data") or {}).get("rateLimit")
    if not info:
        return None
    reset_at = parse_github_timestamp(info.get("resetAt"))
    with _rate_limit_lock:
        _rate_limit["remaining"] = int(info.get("remaining", 0))
        _rate_limit["reset"] = to_epoch_seconds(reset_at) if reset_at else 0.0
    return RateLimitInfo(remaining=int(info.get("remaining", 0)), reset_at=reset_at)


def _wait_for_rate_limit(max_wait: float) -> None:
    """
    Pause when the remaining GitHub quota is low and the reset is near.

    Raises:
        GitHubRateLimitError: the reset is further away than ``max_wait``
    """
    with _rate_limit_lock:
        remaining = _rate_limit["remaining"]
        reset = _rate_limit["reset"]

    if remaining >= GITHUB_LOW_RATE_LIMIT or reset <= 0:
        return

    wait_time = reset - time.time() + 1
    if wait_time <= 0:
        return
    if wait_time > max_wait:
        logger.warning("rate_limit_low", wait_seconds=round(wait_time, 1), remaining=remaining)
        reset_at = datetime.fromtimestamp(reset, timezone.utc).replace(tzinfo=None)
        raise GitHubRateLimitError("GitHub quota nearly exhausted", reset_at=reset_at)

    logger.info("rate_limit_wait", wait_seconds=round(wait_time, 1), remaining=remaining)
    time.sleep(wait_time)


def _raise_for_graphql_errors(payload: dict, owner: str, repo: str) -> None:
    errors = payload.get("errors") or []
    if not errors:
        return
    types = {str(error.get("type", "")) for error in errors}
    message = "; ".join(str(error.get("message", "Unknown")) for error in errors)
    if "NOT_FOUND" in types:
        raise RepositoryNotFoundError(f"Repository {owner}/{repo} not found")
    if "RATE_LIMITED" in types:
        raise GitHubRateLimitError(message)
    logger.warning("graphql_error", owner=owner, repo=repo, error=message)
    if not (payload.get("data") or {}).get("repository"):
        raise GitHubError(f"GraphQL error: {message}")


def _to_issue_record(node: dict) -> dict[str, Any]:
    labels = [
        label.get("name", "")
        for label in (node.get("labels") or {}).get("nodes") or []
        if label and label.get("name")
    ]
    return new_issue_record(
        issue_id=node["id"],
        number=int(node["number"]),
        title=node.get("title") or "",
        body=node.get("body") or "",
        labels=labels,
        created_at=node.get("createdAt"),
        url=node.get("url"),
        state=node.get("state"),
    )


def fetch_issues_page(
    repo_url: str,
    page_size: int | None = None,
    after: str | None = None,
    token: str | None = None,
    max_wait: float | None = None,
) -> IssuePage:
    """
    Fetch one page of a repository's issues (open and closed), oldest cursor first.

    Args:
        repo_url: ``https://github.com/<owner>/<repo>``
        page_size: Issues per page, at most 100. Defaults to settings.
        after: Cursor returned by the previous page, or None for the first page.
        token: Overrides GITHUB_TOKEN.
        max_wait: Longest sleep for a low quota, defaults to GITHUB_RATE_LIMIT_MAX_WAIT.
            Pass 0 where the caller must not block.

    Raises:
        GitHubAuthError: token missing or rejected (fatal)
        GitHubRateLimitError: GitHub refused for quota reasons (transient)
        RepositoryNotFoundError: repository does not exist or is not visible
        GitHubError: any other transport or API failure
    """
    settings = get_settings()
    token = token or settings.github_token
    if not token:
        raise GitHubAuthError("GITHUB_TOKEN is not set")

    owner, repo = parse_repo_url(repo_url)
    page_size = page_size or settings.github_page_size

    _wait_for_rate_limit(settings.github_rate_limit_max_wait if max_wait is None else max_wait)

    variables = {"owner": owner, "repo": repo, "pageSize": page_size, "after": after}
    started = time.perf_counter()
    try:
        response = requests.post(
            GITHUB_GRAPHQL_ENDPOINT,
            headers=_get_headers(token),
            json={"query": ISSUES_QUERY, "variables": variables},
            timeout=settings.github_request_timeout,
        )
    except requests.RequestException as e:
        logger.error("request_exception", owner=owner, repo=repo, error=str(e))
        raise GitHubError(f"Failed to fetch issues: {e}") from e

    if response.status_code == 401:
        logger.error("api_auth_failed", owner=owner, repo=repo)
        raise GitHubAuthError("GitHub authentication failed. Check GITHUB_TOKEN.")
    if response.status_code in (403, 429):
        reset_header = response.headers.get("X-RateLimit-Reset")
        reset_at = datetime.fromtimestamp(int(reset_header), timezone.utc).replace(tzinfo=None) if reset_header else None
        logger.warning("rate_limited", owner=owner, repo=repo, status=response.status_code)
        raise GitHubRateLimitError("GitHub rate limit exceeded", reset_at=reset_at)
    if response.status_code != 200:
        logger.error("api_error", owner=owner, repo=repo, status=response.status_code)
        raise GitHubError(f"GitHub API returned {response.status_code}")

    payload = response.json()
    _raise_for_graphql_errors(payload, owner, repo)
    rate_limit = _update_rate_limit(payload)

    repository = (payload.get("data") or {}).get("repository")
    if repository is None:
        raise RepositoryNotFoundError(f"Repository {owner}/{repo} not found")

    connection = repository.get("issues") or {}
    page_info = connection.get("pageInfo") or {}
    issues = [_to_issue_record(node) for node in connection.get("nodes") or [] if node]

    logger.info(
        "issues_page_fetched",
        owner=owner,
        repo=repo,
        count=len(issues),
        has_next_page=bool(page_info.get("hasNextPage")),
        remaining=rate_limit.remaining if rate_limit else None,
        duration_ms=round((time.perf_counter() - started) * 1000),
    )

    return IssuePage(
        issues=issues,
        end_cursor=page_info.get("endCursor"),
        has_next_page=bool(page_info.get("hasNextPage")),
        rate_limit=rate_limit,
    )


def reset_rate_limit_state() -> None:
    with _rate_limit_lock:
        _rate_limit["remaining"] = 5000
        _rate_limit["reset"] = 0.0


__all__ = [
    "IssuePage",
    "RateLimitInfo",
    "fetch_issues_page",
    "parse_repo_url",
    "reset_rate_limit_state",
]
