"""SQLAlchemy models and enumerations for report jobs and download tokens."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from errors import DataCorruptionError

Base = declarative_base()


class ReportStatus(enum.IntEnum):
    """Job status, persisted as its integer code."""

    QUEUED = 0
    PROCESSING = 1
    COMPLETED = 2
    FAILED = 3

    @classmethod
    def from_code(cls, code: int) -> "ReportStatus":
        """Map a stored code to a status, rejecting anything unmapped."""
        try:
            return _STATUS_BY_CODE[code]
        except (KeyError, TypeError):
            raise DataCorruptionError(f"Invalid report status code: {code!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.COMPLETED, ReportStatus.FAILED)


_STATUS_BY_CODE = {status.value: status for status in ReportStatus}


class ReportType(str, enum.Enum):
    USER_ACTIVITY = "USER_ACTIVITY"
    ACTIVITY_BY_USER = "ACTIVITY_BY_USER"
    DUMMY_TEST = "DUMMY_TEST"


class ReportJob(Base):
    """One report generation request and its lifecycle state."""

    __tablename__ = "reportjobs"

    report_id = Column(String(36), primary_key=True)
    user_id = Column(Integer, nullable=False)
    district_id = Column(Integer, nullable=False)
    report_type = Column(String(50), nullable=False)
    report_params = Column(Text, nullable=True)  # JSON, read by workers only
    status_code = Column("status", Integer, nullable=False, default=0)
    requested_date = Column(DateTime, nullable=False)
    started_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    result_location = Column(String(2048), nullable=True)
    filename = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_district_status", "district_id", "status"),
        Index("idx_user_date", "user_id", "requested_date"),
        Index("idx_status_requested", "status", "requested_date"),
    )

    @property
    def status(self) -> ReportStatus:
        return ReportStatus.from_code(self.status_code)

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            "report_id": self.report_id,
            "user_id": self.user_id,
            "district_id": self.district_id,
            "report_type": self.report_type,
            "report_params": self.report_params,
            "status": self.status.name,
            "requested_date": self.requested_date,
            "started_date": self.started_date,
            "completed_date": self.completed_date,
            "result_location": self.result_location,
            "filename": self.filename,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class DownloadToken(Base):
    """Short-lived capability bound to one job's artifact."""

    __tablename__ = "download_tokens"

    token = Column(String(64), primary_key=True)
    report_id = Column(String(36), nullable=False)
    user_id = Column(Integer, nullable=False)
    district_id = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)
    access_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_tokens_report_id", "report_id"),
        Index("idx_tokens_expires_at", "expires_at"),
    )


class ThresholdConfig(Base):
    """Per report type limits, one row per type."""

    __tablename__ = "threshold_configs"

    report_type = Column(String(50), primary_key=True)
    max_records = Column(Integer, nullable=False, default=5000)
    max_duration_seconds = Column(Integer, nullable=False, default=10)
    description = Column(String(255), nullable=True)
    updated_at = Column(DateTime, nullable=False)


class NotificationQueue(Base):
    """Write-only notification request for terminal job states."""

    __tablename__ = "notification_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String(36), nullable=False)
    user_id = Column(Integer, nullable=False)
    district_id = Column(Integer, nullable=False)
    event_type = Column(String(40), nullable=False)  # REPORT_COMPLETED, REPORT_FAILED
    level = Column(String(40), nullable=True)
    queued = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)
