"""
Pydantic schemas for request and response validation.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ReportSubmitRequest(BaseModel):
    repo_url: str = Field(min_length=1, max_length=512, examples=["https://github.com/acme/widgets"])
    keyword: str = Field(min_length=1, max_length=255, examples=["auth"])


class IssueResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    number: int
    title: str
    url: str | None = None
    state: str | None = None
    labels: list[str] = Field(default_factory=list)
    created_at: str | None = None
    relevance_score: int = 0
    explanation: str = ""
    matched_terms: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)


class ReportSummary(BaseModel):
    id: int
    repo_url: str
    keyword: str
    cursor: str | None = None
    is_complete: bool
    is_canceled: bool
    emails_sent: int = 0
    request_counter: int = 0
    issue_count: int = 0
    pending_count: int = 0
    created_at: str | None = None
    last_fetched_at: str | None = None
    final_email_at: str | None = None


class ReportResponse(ReportSummary):
    issues: list[IssueResult] = Field(default_factory=list)


class SubmitResponse(BaseModel):
    status: Literal["created", "cached", "in_progress", "refreshed"]
    report: ReportResponse


class WorkloadResponse(BaseModel):
    open_reports: int
    queued: int
    running: int


class RequeueResponse(BaseModel):
    report_id: int
    requeued: int


class DeleteResponse(BaseModel):
    report_id: int
    deleted: bool = True
    tasks_deleted: int = 0


class DebugResponse(BaseModel):
    report_id: int
    total_issues: int
    pending: int
    cursor: str | None = None
    is_complete: bool
    is_canceled: bool
    emails_sent: int
    has_relevant: bool
    pending_sample: list[dict[str, Any]] = Field(default_factory=list)
    tasks: dict[str, int] = Field(default_factory=dict)
