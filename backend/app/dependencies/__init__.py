"""
FastAPI dependency injection module.

Provides centralized dependencies for:
- The caller's identity
- The scheduler used to start background work
- Services
"""

from fastapi import Depends, Header, HTTPException, status

from issue_watcher.services import ReportService, Scheduler


def get_current_user_email(x_user_email: str | None = Header(default=None)) -> str:
    """
    Identity set by the authenticating proxy in front of the API.

    Raises:
        HTTPException 401 when the header is missing or not an address
    """
    email = (x_user_email or "").strip().lower()
    if not email or "@" not in email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Email header",
        )
    return email


def get_scheduler() -> Scheduler:
    """Celery-backed scheduler. Imported lazily so the API can start without a broker."""
    from workers.scheduler import CeleryScheduler

    return CeleryScheduler()


def get_report_service(scheduler: Scheduler = Depends(get_scheduler)) -> ReportService:
    return ReportService(scheduler)


__all__ = [
    "get_current_user_email",
    "get_report_service",
    "get_scheduler",
]
