"""
Report endpoints.

Every endpoint acts on behalf of the user named by the X-User-Email
header; reports of other users are reported as not found.
"""

from fastapi import APIRouter, Depends, Query, status

from issue_watcher.services import ReportService

from ..dependencies import get_current_user_email, get_report_service
from ..schemas import (
    DebugResponse,
    DeleteResponse,
    ReportResponse,
    ReportSubmitRequest,
    ReportSummary,
    RequeueResponse,
    SubmitResponse,
    WorkloadResponse,
)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=SubmitResponse, status_code=status.HTTP_202_ACCEPTED)
def submit_report(
    request: ReportSubmitRequest,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    """
    Start analyzing a repository's issues for a keyword.

    Returns the existing report when one is in progress or was completed
    recently; results arrive by email as pages are analyzed.
    """
    submission = service.submit(user_email, request.repo_url, request.keyword)
    return {"status": submission.status, "report": submission.report}


@router.get("", response_model=list[ReportSummary])
def list_reports(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    return service.list_reports(user_email, limit=limit, offset=offset)


@router.get("/workload", response_model=WorkloadResponse)
def get_workload(
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    """Open reports and queued/running analysis tasks of the caller."""
    return service.workload(user_email)


@router.get("/{report_id}", response_model=ReportResponse)
def get_report(
    report_id: int,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    return service.get_report(report_id, user_email=user_email)


@router.post("/{report_id}/cancel", response_model=ReportResponse)
def cancel_report(
    report_id: int,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    return service.cancel_report(report_id, user_email=user_email)


@router.delete("/{report_id}", response_model=DeleteResponse)
def delete_report(
    report_id: int,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    """Delete a report together with all of its analysis tasks."""
    tasks_deleted = service.delete_report(report_id, user_email=user_email)
    return {"report_id": report_id, "deleted": True, "tasks_deleted": tasks_deleted}


@router.post("/{report_id}/requeue-errors", response_model=RequeueResponse)
def requeue_errors(
    report_id: int,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    requeued = service.requeue_error_tasks(report_id, user_email=user_email)
    return {"report_id": report_id, "requeued": requeued}


@router.get("/{report_id}/debug", response_model=DebugResponse)
def debug_report(
    report_id: int,
    user_email: str = Depends(get_current_user_email),
    service: ReportService = Depends(get_report_service),
):
    return service.debug_report(report_id, user_email=user_email)
