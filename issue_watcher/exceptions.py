"""
Exception hierarchy for Issue Watcher.

Collaborator clients raise typed errors so callers can tell fatal failures
(bad credentials, unknown repository) from transient ones (rate limits,
timeouts) without inspecting messages.
"""

from datetime import datetime
from typing import Optional


class IssueWatcherError(Exception):
    """Base class for all application errors."""


# =============================================================================
# Submission validation
# =============================================================================


class ValidationError(IssueWatcherError):
    """Input rejected before any work is scheduled."""


class InvalidRepositoryURLError(ValidationError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid GitHub repository URL: {url!r}")


class InvalidKeywordError(ValidationError):
    pass


class ReportNotFoundError(IssueWatcherError):
    def __init__(self, report_id: int):
        self.report_id = report_id
        super().__init__(f"Report {report_id} not found")


# =============================================================================
# GitHub
# =============================================================================


class GitHubError(IssueWatcherError):
    """Failure talking to the GitHub GraphQL API."""


class GitHubAuthError(GitHubError):
    """Missing or rejected token. Fatal, never retried."""


class GitHubRateLimitError(GitHubError):
    """Upstream quota exhausted; retry after ``reset_at``."""

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        self.reset_at = reset_at
        super().__init__(message)


class RepositoryNotFoundError(GitHubError):
    pass


# =============================================================================
# LLM analysis
# =============================================================================


class AnalysisError(IssueWatcherError):
    """Per-task analysis failure. Counts against the task's attempts."""


class LLMTimeoutError(AnalysisError):
    pass


class LLMRateLimitError(AnalysisError):
    pass


class LLMAPIError(AnalysisError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedAnalysisError(AnalysisError):
    """Model output could not be parsed by either parsing tier."""


# =============================================================================
# Notifications and storage
# =============================================================================


class EmailDeliveryError(IssueWatcherError):
    pass


class ReportWriteConflictError(IssueWatcherError):
    """Batched report update lost the optimistic version race too many times."""

    def __init__(self, report_id: int, attempts: int):
        self.report_id = report_id
        self.attempts = attempts
        super().__init__(f"Report {report_id} update conflicted {attempts} times")


__all__ = [
    "IssueWatcherError",
    "ValidationError",
    "InvalidRepositoryURLError",
    "InvalidKeywordError",
    "ReportNotFoundError",
    "GitHubError",
    "GitHubAuthError",
    "GitHubRateLimitError",
    "RepositoryNotFoundError",
    "AnalysisError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMAPIError",
    "MalformedAnalysisError",
    "EmailDeliveryError",
    "ReportWriteConflictError",
]
