"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from models import ReportJob, ReportStatus


class CreateReportRequest(BaseModel):
    """Request schema for queuing a new report."""

    report_type: str = Field(..., description="Report type, e.g. USER_ACTIVITY")
    report_params: Dict[str, Any] = Field(
        default_factory=dict, description="Criteria passed through to the worker"
    )


class ReportLinks(BaseModel):
    """Report links for HATEOAS."""

    self: str = Field(..., description="Link to report details")
    download_token: Optional[str] = Field(
        None, description="Link for requesting a download token"
    )


class ReportJobResponse(BaseModel):
    """Report job as seen by clients."""

    report_id: str = Field(..., description="Report identifier")
    report_type: str = Field(..., description="Report type")
    status: str = Field(..., description="QUEUED, PROCESSING, COMPLETED or FAILED")
    user_id: int = Field(..., description="Owning user")
    district_id: int = Field(..., description="Owning district")
    requested_date: datetime = Field(..., description="When the report was requested")
    started_date: Optional[datetime] = Field(None, description="When processing started")
    completed_date: Optional[datetime] = Field(
        None, description="When the job reached a terminal state"
    )
    updated_at: datetime = Field(..., description="Last modification time")
    filename: Optional[str] = Field(None, description="Generated filename")
    error_message: Optional[str] = Field(None, description="Error message if failed")
    links: ReportLinks = Field(..., description="Report links")

    @classmethod
    def from_job(cls, job: ReportJob) -> "ReportJobResponse":
        status = job.status
        return cls(
            report_id=job.report_id,
            report_type=job.report_type,
            status=status.name,
            user_id=job.user_id,
            district_id=job.district_id,
            requested_date=job.requested_date,
            started_date=job.started_date,
            completed_date=job.completed_date,
            updated_at=job.updated_at,
            filename=job.filename,
            error_message=job.error_message,
            links=ReportLinks(
                self=f"/reports/{job.report_id}",
                download_token=(
                    f"/reports/{job.report_id}/download-token"
                    if status is ReportStatus.COMPLETED
                    else None
                ),
            ),
        )


class ReportListResponse(BaseModel):
    reports: List[ReportJobResponse] = Field(default_factory=list)
    total: int = Field(0, description="Number of reports returned")


class DownloadTokenRequest(BaseModel):
    ttl_sec: Optional[int] = Field(
        None, gt=0, description="Token lifetime; defaults to the configured TTL"
    )


class DownloadTokenResponse(BaseModel):
    report_id: str = Field(..., description="Report the token grants access to")
    token: str = Field(..., description="Opaque download token")
    download_url: str = Field(..., description="URL redeeming the token")
    expires_at: datetime = Field(..., description="UTC expiry of the token")


class LifecycleEvent(BaseModel):
    """Status change reported by a report worker."""

    report_id: str = Field(..., min_length=1, description="Report the event refers to")
    status: str = Field(..., description="PROCESSING, COMPLETED or FAILED")
    result_location: Optional[str] = Field(
        None, description="Stored artifact reference, required for COMPLETED"
    )
    filename: Optional[str] = Field(None, description="Generated filename")
    reason: Optional[str] = Field(None, description="Failure reason for FAILED")

    @model_validator(mode="after")
    def check_payload(self) -> "LifecycleEvent":
        status = self.status.upper()
        if status not in ReportStatus.__members__:
            raise ValueError(f"Unknown status: {self.status}")
        if status == ReportStatus.COMPLETED.name and not self.result_location:
            raise ValueError("COMPLETED events need a result_location")
        self.status = status
        return self

    def target_status(self) -> ReportStatus:
        return ReportStatus[self.status]


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool = Field(..., description="Service health status")
    db: str = Field(..., description="Database status")
    version: str = Field(..., description="Application version")


class ErrorResponse(BaseModel):
    """Body of every error returned by the API."""

    status: int = Field(..., description="HTTP status code")
    error: str = Field(..., description="Error code, e.g. REPORT_NOT_READY")
    message: str = Field(..., description="Human readable message")
    path: str = Field(..., description="Request path")
    timestamp: datetime = Field(..., description="When the error happened")
    debug_message: Optional[str] = Field(
        None, description="Exception detail, only outside production"
    )
