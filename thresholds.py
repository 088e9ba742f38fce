"""Per report type size limits."""

from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from db import ThresholdRepository
from lifecycle import parse_report_type
from models import ThresholdConfig
from utils import utc_now

DEFAULT_MAX_RECORDS = 5000
DEFAULT_MAX_DURATION_SECONDS = 10


class ThresholdService:
    """Reads threshold rows, falling back to defaults for unconfigured types."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.repo = ThresholdRepository(db)
        self.clock = clock

    def get_config(self, report_type: Any) -> ThresholdConfig:
        report_type = parse_report_type(report_type)
        config = self.repo.get(report_type.value)
        if config is None:
            logger.warning(
                f"No threshold config found for report type {report_type.value}, using defaults"
            )
            config = ThresholdConfig(
                report_type=report_type.value,
                max_records=DEFAULT_MAX_RECORDS,
                max_duration_seconds=DEFAULT_MAX_DURATION_SECONDS,
                description="Default threshold",
            )
        return config

    def upsert(
        self,
        report_type: Any,
        max_records: int,
        max_duration_seconds: int,
        description: Optional[str] = None,
    ) -> ThresholdConfig:
        report_type = parse_report_type(report_type)
        return self.repo.upsert(
            report_type.value,
            self.clock(),
            max_records=max_records,
            max_duration_seconds=max_duration_seconds,
            description=description,
        )

    def exceeds_record_threshold(self, report_type: Any, estimated_records: int) -> bool:
        return estimated_records > self.get_config(report_type).max_records

    def exceeds_duration_threshold(self, report_type: Any, estimated_seconds: int) -> bool:
        return estimated_seconds > self.get_config(report_type).max_duration_seconds

    def should_process_async(
        self, report_type: Any, estimated_records: int, estimated_seconds: int
    ) -> bool:
        """Either limit being exceeded sends the report to the async path."""
        return self.exceeds_record_threshold(
            report_type, estimated_records
        ) or self.exceeds_duration_threshold(report_type, estimated_seconds)
