"""Report job state machine.

QUEUED -> PROCESSING -> COMPLETED | FAILED, with QUEUED -> FAILED allowed for
jobs rejected before a worker picks them up. COMPLETED and FAILED are
terminal; a rerun is a new job with a new report_id.
"""

import json
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from db import JobRepository
from errors import (
    IllegalTransitionError,
    ReportJobNotFoundError,
    ReportNotReadyError,
    UnsupportedReportTypeError,
    ValidationError,
)
from models import ReportJob, ReportStatus, ReportType
from schemas import LifecycleEvent
from settings import settings
from utils import (
    calculate_elapsed_seconds,
    generate_report_id,
    truncate_error_message,
    utc_now,
)

# Source states each target may be entered from.
ALLOWED_SOURCES = {
    ReportStatus.PROCESSING: (ReportStatus.QUEUED,),
    ReportStatus.COMPLETED: (ReportStatus.PROCESSING,),
    ReportStatus.FAILED: (ReportStatus.QUEUED, ReportStatus.PROCESSING),
}

NOTIFICATION_EVENTS = {
    ReportStatus.COMPLETED: "REPORT_COMPLETED",
    ReportStatus.FAILED: "REPORT_FAILED",
}


def parse_report_type(value: Any) -> ReportType:
    try:
        return ReportType(value)
    except ValueError:
        raise UnsupportedReportTypeError(str(value)) from None


class JobLifecycleManager:
    """Creates report jobs and applies lifecycle transitions to them."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.jobs = JobRepository(db)
        self.clock = clock

    def create(
        self,
        user_id: int,
        district_id: int,
        report_type: Any,
        report_params: Optional[dict] = None,
    ) -> ReportJob:
        """Create a QUEUED job for a user."""
        report_type = parse_report_type(report_type)
        if not isinstance(user_id, int) or user_id <= 0:
            raise ValidationError(f"Invalid user id: {user_id!r}")
        if not isinstance(district_id, int) or district_id <= 0:
            raise ValidationError(f"Invalid district id: {district_id!r}")
        try:
            params_json = json.dumps(report_params or {}, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Report parameters are not serializable: {e}") from e

        now = self.clock()
        job = self.jobs.create_job(
            {
                "report_id": generate_report_id(),
                "user_id": user_id,
                "district_id": district_id,
                "report_type": report_type.value,
                "report_params": params_json,
                "status_code": int(ReportStatus.QUEUED),
                "requested_date": now,
                "created_at": now,
                "updated_at": now,
            }
        )
        logger.info(
            f"Created report job {job.report_id}: type={job.report_type}, "
            f"user={user_id}, district={district_id}"
        )
        return job

    def get(self, report_id: str) -> ReportJob:
        job = self.jobs.get_job(report_id)
        if job is None:
            raise ReportJobNotFoundError(report_id)
        return job

    def require_ready(self, report_id: str) -> ReportJob:
        """Return the job if it is COMPLETED right now, else raise ReportNotReadyError."""
        job = self.get(report_id)
        status = job.status
        if status is not ReportStatus.COMPLETED:
            logger.warning(f"Report not ready for download: {report_id} status={status.name}")
            raise ReportNotReadyError(report_id, status.name)
        return job

    def list_for_user(self, user_id: int) -> list[ReportJob]:
        return self.jobs.list_jobs_for_user(user_id)

    def list_for_district(self, district_id: int, status: ReportStatus) -> list[ReportJob]:
        return self.jobs.list_jobs_for_district(district_id, status)

    def mark_processing(self, report_id: str) -> ReportJob:
        now = self.clock()
        return self._transition(report_id, ReportStatus.PROCESSING, now, started_date=now)

    def mark_completed(
        self, report_id: str, result_location: str, filename: Optional[str] = None
    ) -> ReportJob:
        if not result_location:
            raise ValidationError("result_location is required to complete a report")
        now = self.clock()
        job = self._transition(
            report_id,
            ReportStatus.COMPLETED,
            now,
            completed_date=now,
            result_location=result_location,
            filename=filename,
            error_message=None,
        )
        if job.started_date is not None:
            logger.info(
                f"Report {report_id} took {calculate_elapsed_seconds(job.started_date, now):.1f}s"
            )
        return job

    def mark_failed(self, report_id: str, reason: Optional[str]) -> ReportJob:
        now = self.clock()
        message = truncate_error_message(reason, settings.max_error_message_length)
        job = self._transition(
            report_id,
            ReportStatus.FAILED,
            now,
            completed_date=now,
            error_message=message,
        )
        logger.warning(f"Report {report_id} failed: {message}")
        return job

    def delete(self, report_id: str) -> None:
        """Delete a job and every download token bound to it."""
        if self.jobs.delete_job(report_id) == 0:
            raise ReportJobNotFoundError(report_id)
        logger.info(f"Deleted report job {report_id} and its download tokens")

    def apply_event(self, event: LifecycleEvent) -> bool:
        """Apply a worker event; returns False for a redelivered duplicate."""
        target = event.target_status()
        current = self.get(event.report_id).status
        if current is target:
            logger.info(
                f"Duplicate {target.name} event for report {event.report_id}, ignoring"
            )
            return False

        try:
            if target is ReportStatus.PROCESSING:
                self.mark_processing(event.report_id)
            elif target is ReportStatus.COMPLETED:
                self.mark_completed(event.report_id, event.result_location, event.filename)
            elif target is ReportStatus.FAILED:
                self.mark_failed(event.report_id, event.reason)
            else:
                raise ValidationError(f"Workers cannot move a report to {target.name}")
        except IllegalTransitionError as e:
            # Another delivery of the same event won between the read and the update
            if e.current == target.name:
                logger.info(
                    f"Concurrent duplicate {target.name} event for report {event.report_id}, ignoring"
                )
                return False
            raise
        return True

    def _transition(
        self, report_id: str, target: ReportStatus, now: datetime, **fields
    ) -> ReportJob:
        job = self.jobs.transition_status(
            report_id,
            ALLOWED_SOURCES[target],
            target,
            now,
            notification=NOTIFICATION_EVENTS.get(target),
            **fields,
        )
        if job is None:
            current = self.get(report_id).status
            logger.warning(
                f"Rejected transition of report {report_id}: {current.name} -> {target.name}"
            )
            raise IllegalTransitionError(report_id, current.name, target.name)

        logger.info(f"Report {report_id} moved to {target.name}")
        return job
