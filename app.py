"""Main FastAPI application for the report service."""

import sys
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from loguru import logger
from sqlalchemy.orm import Session

from access import AccessGuard, Principal, Role
from auth import get_current_principal
from db import check_db_health, get_db, init_db
from errors import ForbiddenError, ReportServiceError, ValidationError
from lifecycle import JobLifecycleManager
from models import ReportStatus
from schemas import (
    CreateReportRequest,
    DownloadTokenRequest,
    DownloadTokenResponse,
    ErrorResponse,
    HealthResponse,
    ReportJobResponse,
    ReportListResponse,
)
from settings import settings
from storage import ReportStorage
from sweeper import sweeper
from tokens import TokenIssuer
from utils import generate_correlation_id, utc_now


# Configure logging
logger.remove()
logger.configure(extra={"correlation_id": "-"})
logger.add(
    sys.stderr,
    level=settings.log_level.upper(),
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <magenta>{extra[correlation_id]}</magenta> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

access_guard = AccessGuard()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting report service ({settings.environment})")

    # Refuse to serve requests we could not authenticate
    settings.require_jwt_secret()

    init_db()
    logger.info("Database initialized")

    await sweeper.start()
    logger.info("Token sweeper started")

    yield

    logger.info("Shutting down report service")
    await sweeper.stop()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Report Service",
    description="Asynchronous report jobs with expiring download tokens",
    version=settings.version,
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag every log line of a request with its correlation id and echo it back."""
    correlation_id = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
    with logger.contextualize(correlation_id=correlation_id):
        response = await call_next(request)
    response.headers[CORRELATION_ID_HEADER] = correlation_id
    return response


def _error_response(
    request: Request, status_code: int, error: str, message: str, exc: Exception
) -> JSONResponse:
    body = ErrorResponse(
        status=status_code,
        error=error,
        message=message,
        path=request.url.path,
        timestamp=utc_now(),
        debug_message=str(exc) if settings.is_dev_environment else None,
    )
    return JSONResponse(
        status_code=status_code, content=body.model_dump(mode="json", exclude_none=True)
    )


@app.exception_handler(ReportServiceError)
async def report_service_error_handler(request: Request, exc: ReportServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc}")
        message = "The report service failed to handle the request. Please try again later."
    else:
        logger.warning(f"{exc.error_code} on {request.method} {request.url.path}: {exc}")
        message = exc.message
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    response = _error_response(request, exc.status_code, exc.error_code, message, exc)
    if headers:
        response.headers.update(headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Render malformed payloads like any other validation failure."""
    logger.warning(f"Request validation failed on {request.method} {request.url.path}: {exc.errors()}")
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        ValidationError.error_code,
        "Request validation failed",
        exc,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error(f"Unhandled error on {request.method} {request.url.path}:\n{''.join(tb)}")
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred. Please contact support.",
        exc,
    )


def get_lifecycle(db: Session = Depends(get_db)) -> JobLifecycleManager:
    return JobLifecycleManager(db)


def get_token_issuer(
    db: Session = Depends(get_db),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
) -> TokenIssuer:
    return TokenIssuer(db, lifecycle)


def get_storage() -> ReportStorage:
    return ReportStorage()


def load_visible_job(
    report_id: str, principal: Principal, lifecycle: JobLifecycleManager
):
    job = lifecycle.get(report_id)
    if not access_guard.can_view(principal, job):
        logger.warning(
            f"Access denied: user {principal.user_id} attempted report {report_id} "
            f"owned by user {job.user_id}"
        )
        raise ForbiddenError(f"You are not authorized to access report {report_id}")
    return job


@app.get("/healthz", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_healthy = check_db_health()

    return HealthResponse(
        ok=db_healthy, db="ready" if db_healthy else "error", version=settings.version
    )


@app.post(
    "/reports", response_model=ReportJobResponse, status_code=status.HTTP_202_ACCEPTED
)
def create_report(
    request: CreateReportRequest,
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """Queue a new report for the calling user."""
    if principal.district_id is None:
        raise ValidationError("Token does not carry a district")
    job = lifecycle.create(
        user_id=principal.user_id,
        district_id=principal.district_id,
        report_type=request.report_type,
        report_params=request.report_params,
    )
    return ReportJobResponse.from_job(job)


@app.get("/reports", response_model=ReportListResponse)
def list_reports(
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """List the caller's reports, most recent first."""
    jobs = lifecycle.list_for_user(principal.user_id)
    return ReportListResponse(
        reports=[ReportJobResponse.from_job(job) for job in jobs], total=len(jobs)
    )


@app.get("/reports/{report_id}", response_model=ReportJobResponse)
def get_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """Get report status and details."""
    job = load_visible_job(report_id, principal, lifecycle)
    return ReportJobResponse.from_job(job)


@app.get("/districts/{district_id}/reports", response_model=ReportListResponse)
def list_district_reports(
    district_id: int,
    report_status: str = Query(..., alias="status", description="Exact status to filter by"),
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """List a district's reports in one status, for district administrators."""
    if not access_guard.can_view_district(principal, district_id):
        raise ForbiddenError(f"You are not authorized to list reports of district {district_id}")
    try:
        wanted = ReportStatus[report_status.upper()]
    except KeyError:
        raise ValidationError(f"Unknown report status: {report_status}") from None
    jobs = lifecycle.list_for_district(district_id, wanted)
    return ReportListResponse(
        reports=[ReportJobResponse.from_job(job) for job in jobs], total=len(jobs)
    )


@app.post(
    "/reports/{report_id}/download-token",
    response_model=DownloadTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_download_token(
    report_id: str,
    request: Optional[DownloadTokenRequest] = None,
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Mint a short-lived download token for a completed report."""
    load_visible_job(report_id, principal, lifecycle)
    token = issuer.issue(report_id, request.ttl_sec if request else None)
    return DownloadTokenResponse(
        report_id=report_id,
        token=token.token,
        download_url=f"{settings.base_url.rstrip('/')}/r/{token.token}",
        expires_at=token.expires_at,
    )


@app.get("/r/{token}")
def redeem_download_token(
    token: str,
    issuer: TokenIssuer = Depends(get_token_issuer),
    storage: ReportStorage = Depends(get_storage),
):
    """Redeem a download token. The token itself is the credential."""
    resolved = issuer.resolve(token)
    target = storage.download_target(resolved.result_location)
    if target.url:
        logger.info(f"Redirecting download of report {resolved.report_id}")
        return RedirectResponse(target.url, status_code=status.HTTP_302_FOUND)

    logger.info(f"Streaming report {resolved.report_id} from {target.path}")
    return FileResponse(
        target.path,
        media_type="application/octet-stream",
        filename=resolved.filename or target.path.name,
    )


@app.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """Delete a report and revoke its download tokens (administrators only)."""
    if not principal.has_role(Role.ADMIN):
        raise ForbiddenError("Only administrators may delete reports")
    lifecycle.delete(report_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
