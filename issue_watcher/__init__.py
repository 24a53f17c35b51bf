"""
Issue Watcher core library.

Scores a GitHub repository's issues against a keyword with an LLM and emails
the owner progressively refined reports. Shared by the API process and the
Celery workers.

Usage:
    from issue_watcher.db import db
    from issue_watcher.config import get_settings
    from issue_watcher.logging import get_logger

Import from submodules directly; this package does not re-export them.
"""

__version__ = "1.0.0"
