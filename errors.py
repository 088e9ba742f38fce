"""Domain exceptions for the report service.

Each exception carries the HTTP status and error code the API layer renders,
so the service code raises domain errors and never touches HTTP types.
"""

from typing import Optional


class ReportServiceError(Exception):
    """Base class for all report service errors."""

    status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReportServiceError):
    """Request payload has the wrong shape or values."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class UnsupportedReportTypeError(ReportServiceError):
    status_code = 400
    error_code = "UNSUPPORTED_REPORT_TYPE"

    def __init__(self, report_type: str):
        super().__init__(f"Unsupported report type: {report_type}")
        self.report_type = report_type


class UnauthenticatedError(ReportServiceError):
    status_code = 401
    error_code = "UNAUTHENTICATED"


class ForbiddenError(ReportServiceError):
    """Principal is authenticated but may not touch the resource."""

    status_code = 403
    error_code = "FORBIDDEN"


class ReportJobNotFoundError(ReportServiceError):
    status_code = 404
    error_code = "REPORT_JOB_NOT_FOUND"

    def __init__(self, report_id: str):
        super().__init__(f"Report job not found: {report_id}")
        self.report_id = report_id


class TokenNotFoundError(ReportServiceError):
    status_code = 404
    error_code = "TOKEN_NOT_FOUND"

    def __init__(self, token_hint: str):
        super().__init__("Download link not found. Please request a new download link.")
        self.token_hint = token_hint


class TokenExpiredError(ReportServiceError):
    status_code = 410
    error_code = "TOKEN_EXPIRED"

    def __init__(self, token_hint: str):
        super().__init__("Download link has expired. Please request a new download link.")
        self.token_hint = token_hint


class ReportNotReadyError(ReportServiceError):
    """Download requested before the job reached COMPLETED."""

    status_code = 409
    error_code = "REPORT_NOT_READY"

    def __init__(self, report_id: str, status: str):
        super().__init__(f"Report {report_id} is not ready yet. Current status: {status}")
        self.report_id = report_id
        self.status = status


class IllegalTransitionError(ReportServiceError):
    """A lifecycle event does not apply to the job's current state."""

    status_code = 409
    error_code = "ILLEGAL_TRANSITION"

    def __init__(self, report_id: str, current: str, attempted: str):
        super().__init__(
            f"Cannot move report {report_id} from {current} to {attempted}"
        )
        self.report_id = report_id
        self.current = current
        self.attempted = attempted


class DataCorruptionError(ReportServiceError):
    """Persisted data holds a value outside its closed domain."""

    status_code = 500
    error_code = "DATA_CORRUPTION"


class StoreUnavailableError(ReportServiceError):
    """The backing store failed or timed out; safe to retry later."""

    status_code = 503
    error_code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(f"Store operation failed: {operation}")
        self.operation = operation
        self.cause = cause
