"""Database configuration, session management and repositories."""

import functools
import math
from datetime import datetime
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import create_engine, delete, select, text, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from errors import StoreUnavailableError
from models import (
    Base,
    DownloadToken,
    NotificationQueue,
    ReportJob,
    ReportStatus,
    ThresholdConfig,
)
from settings import settings


def store_connect_args(db_url: str, timeout: float) -> dict:
    """Driver arguments bounding connects and statements by ``timeout`` seconds."""
    url = make_url(db_url)
    backend = url.get_backend_name()
    whole_seconds = max(1, math.ceil(timeout))
    millis = max(1, int(timeout * 1000))

    if backend == "sqlite":
        return {"check_same_thread": False, "timeout": timeout}
    if backend == "postgresql":
        if url.get_driver_name() == "pg8000":
            return {"timeout": whole_seconds}
        return {
            "connect_timeout": whole_seconds,
            "options": f"-c statement_timeout={millis} -c lock_timeout={millis}",
        }
    if backend in ("mysql", "mariadb"):
        return {
            "connect_timeout": whole_seconds,
            "read_timeout": whole_seconds,
            "write_timeout": whole_seconds,
        }

    logger.warning(f"No statement timeout support for {backend}, store calls may block")
    return {}


def build_engine(db_url: str, timeout: float = settings.store_timeout_sec):
    """Create an engine whose operations give up after ``timeout`` seconds."""
    connect_args = store_connect_args(db_url, timeout)
    if db_url.startswith("sqlite"):
        if ":memory:" in db_url or db_url == "sqlite://":
            return create_engine(
                db_url, poolclass=StaticPool, connect_args=connect_args, echo=False
            )
        return create_engine(db_url, connect_args=connect_args, echo=False)

    return create_engine(
        db_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=timeout,
        echo=False,
    )


engine = build_engine(settings.db_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def store_operation(func):
    """Translate driver failures into StoreUnavailableError after rolling back."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store operation {func.__qualname__} failed: {e}")
            self.db.rollback()
            raise StoreUnavailableError(func.__qualname__, e) from e

    return wrapper


class JobRepository:
    """Repository for report job operations."""

    def __init__(self, db: Session):
        self.db = db

    @store_operation
    def create_job(self, job_data: dict) -> ReportJob:
        """Create a new job."""
        job = ReportJob(**job_data)
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    @store_operation
    def get_job(self, report_id: str) -> Optional[ReportJob]:
        """Get job by ID, always re-read from the store."""
        return self.db.get(ReportJob, report_id, populate_existing=True)

    @store_operation
    def list_jobs_for_user(self, user_id: int) -> list[ReportJob]:
        """Get a user's jobs, most recently requested first."""
        stmt = (
            select(ReportJob)
            .where(ReportJob.user_id == user_id)
            .order_by(ReportJob.requested_date.desc())
        )
        return list(self.db.scalars(stmt).all())

    @store_operation
    def list_jobs_for_district(
        self, district_id: int, status: ReportStatus
    ) -> list[ReportJob]:
        """Get a district's jobs in exactly the given status."""
        stmt = (
            select(ReportJob)
            .where(
                ReportJob.district_id == district_id,
                ReportJob.status_code == int(status),
            )
            .order_by(ReportJob.requested_date.desc())
        )
        return list(self.db.scalars(stmt).all())

    @store_operation
    def transition_status(
        self,
        report_id: str,
        expected: Iterable[ReportStatus],
        target: ReportStatus,
        now: datetime,
        notification: Optional[str] = None,
        **fields,
    ) -> Optional[ReportJob]:
        """Move a job to ``target`` only if it is currently in one of ``expected``.

        The check and the write are one UPDATE statement, so concurrent callers
        cannot both succeed. Returns the updated job, or None when no row
        matched. A notification record, if requested, commits with the update.
        """
        stmt = (
            update(ReportJob)
            .where(
                ReportJob.report_id == report_id,
                ReportJob.status_code.in_([int(s) for s in expected]),
            )
            .values(status_code=int(target), updated_at=now, **fields)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            self.db.rollback()
            return None

        job = self.db.get(ReportJob, report_id, populate_existing=True)
        if notification:
            self.db.add(
                NotificationQueue(
                    report_id=job.report_id,
                    user_id=job.user_id,
                    district_id=job.district_id,
                    event_type=notification,
                    level="IMMEDIATELY",
                    queued=False,
                    created_at=now,
                )
            )
        self.db.commit()
        self.db.refresh(job)
        return job

    @store_operation
    def delete_job(self, report_id: str) -> int:
        """Delete a job together with all of its download tokens."""
        self.db.execute(delete(DownloadToken).where(DownloadToken.report_id == report_id))
        result = self.db.execute(delete(ReportJob).where(ReportJob.report_id == report_id))
        self.db.commit()
        return result.rowcount


class TokenRepository:
    """Repository for download token operations."""

    def __init__(self, db: Session):
        self.db = db

    @store_operation
    def create_token(self, token_data: dict) -> DownloadToken:
        """Persist a new token."""
        token = DownloadToken(**token_data)
        self.db.add(token)
        self.db.commit()
        self.db.refresh(token)
        return token

    @store_operation
    def get_token(self, token: str) -> Optional[DownloadToken]:
        return self.db.get(DownloadToken, token, populate_existing=True)

    @store_operation
    def record_access(self, token: str, now: datetime) -> bool:
        """Count one redemption, only while the token is still unexpired."""
        stmt = (
            update(DownloadToken)
            .where(DownloadToken.token == token, DownloadToken.expires_at > now)
            .values(
                access_count=DownloadToken.access_count + 1,
                last_accessed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    @store_operation
    def delete_token(self, token: str) -> int:
        result = self.db.execute(delete(DownloadToken).where(DownloadToken.token == token))
        self.db.commit()
        return result.rowcount

    @store_operation
    def delete_by_report_id(self, report_id: str) -> int:
        """Delete all tokens bound to a report."""
        result = self.db.execute(
            delete(DownloadToken).where(DownloadToken.report_id == report_id)
        )
        self.db.commit()
        return result.rowcount

    @store_operation
    def delete_expired(self, now: datetime) -> int:
        """Delete tokens whose expiry lies strictly in the past."""
        result = self.db.execute(delete(DownloadToken).where(DownloadToken.expires_at < now))
        self.db.commit()
        return result.rowcount

    @store_operation
    def delete_orphaned(self) -> int:
        """Delete tokens whose report no longer exists."""
        result = self.db.execute(
            delete(DownloadToken)
            .where(DownloadToken.report_id.not_in(select(ReportJob.report_id)))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    @store_operation
    def list_for_report(self, report_id: str) -> list[DownloadToken]:
        stmt = select(DownloadToken).where(DownloadToken.report_id == report_id)
        return list(self.db.scalars(stmt).all())


class ThresholdRepository:
    """Repository for per report type threshold rows."""

    def __init__(self, db: Session):
        self.db = db

    @store_operation
    def get(self, report_type: str) -> Optional[ThresholdConfig]:
        return self.db.get(ThresholdConfig, report_type)

    @store_operation
    def upsert(self, report_type: str, now: datetime, **fields) -> ThresholdConfig:
        """Insert or update the single row for ``report_type``."""
        config = self.db.get(ThresholdConfig, report_type)
        if config is None:
            config = ThresholdConfig(report_type=report_type)
            self.db.add(config)
        for key, value in fields.items():
            if hasattr(config, key):
                setattr(config, key, value)
        config.updated_at = now
        self.db.commit()
        self.db.refresh(config)
        return config


class NotificationRepository:
    """Read side of the notification queue, used by tests and diagnostics."""

    def __init__(self, db: Session):
        self.db = db

    @store_operation
    def list_for_report(self, report_id: str) -> list[NotificationQueue]:
        stmt = (
            select(NotificationQueue)
            .where(NotificationQueue.report_id == report_id)
            .order_by(NotificationQueue.id)
        )
        return list(self.db.scalars(stmt).all())


def check_db_health() -> bool:
    """Check database health."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False
