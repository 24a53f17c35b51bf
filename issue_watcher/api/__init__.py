"""External API clients."""

from .github_api import IssuePage, fetch_issues_page, parse_repo_url

__all__ = ["IssuePage", "fetch_issues_page", "parse_repo_url"]
