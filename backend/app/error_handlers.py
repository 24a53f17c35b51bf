"""
Custom exception handlers for FastAPI.

Domain errors raised by the services are mapped to HTTP status codes here
so routers can stay free of try/except blocks.
"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from issue_watcher.exceptions import (
    GitHubAuthError,
    GitHubError,
    GitHubRateLimitError,
    ReportNotFoundError,
    RepositoryNotFoundError,
    ValidationError,
)
from issue_watcher.logging import get_logger

logger = get_logger("backend.errors")


def _response_payload(detail: str, status_code: int) -> dict:
    return {
        "detail": detail,
        "status_code": status_code,
    }


def _error_response(status_code: int, detail: str, event: str, exc: Exception) -> JSONResponse:
    logger.warning(
        event,
        detail=detail,
        status_code=status_code,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=status_code, content=_response_payload(detail, status_code))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _error_response(exc.status_code, str(exc.detail), "http_exception", exc)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error_response(422, str(exc), "validation_error", exc)

    @app.exception_handler(ReportNotFoundError)
    async def report_not_found_handler(request: Request, exc: ReportNotFoundError):
        return _error_response(404, str(exc), "report_not_found", exc)

    @app.exception_handler(RepositoryNotFoundError)
    async def repository_not_found_handler(request: Request, exc: RepositoryNotFoundError):
        return _error_response(404, str(exc), "repository_not_found", exc)

    @app.exception_handler(GitHubAuthError)
    async def github_auth_handler(request: Request, exc: GitHubAuthError):
        # upstream credential problem, not the caller's
        return _error_response(502, "GitHub authentication failed", "github_auth_failed", exc)

    @app.exception_handler(GitHubRateLimitError)
    async def github_rate_limit_handler(request: Request, exc: GitHubRateLimitError):
        return _error_response(503, "GitHub rate limit exceeded, try again later", "github_rate_limited", exc)

    @app.exception_handler(GitHubError)
    async def github_error_handler(request: Request, exc: GitHubError):
        return _error_response(502, "GitHub request failed", "github_error", exc)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content=_response_payload("Internal server error", 500),
        )
