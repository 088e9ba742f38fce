"""Consumer for lifecycle events published by report workers."""

from typing import Any, Dict

from loguru import logger
from pydantic import ValidationError as SchemaValidationError

import db
from errors import IllegalTransitionError, ReportJobNotFoundError, ValidationError
from lifecycle import JobLifecycleManager
from schemas import LifecycleEvent


class LifecycleEventConsumer:
    """Applies worker events to report jobs.

    The queue delivers at least once, so the same event may arrive twice or
    two workers may report on one job concurrently. Duplicates are
    acknowledged without changes; events that do not fit the job's current
    state raise IllegalTransitionError and are not retried.
    """

    def __init__(self, consumer_id: str = "lifecycle-consumer"):
        self.consumer_id = consumer_id

    def handle(self, payload: Dict[str, Any]) -> bool:
        """Apply one event; returns True when the job changed state."""
        try:
            event = LifecycleEvent.model_validate(payload)
        except SchemaValidationError as e:
            logger.error(f"Consumer {self.consumer_id} rejected malformed event: {e}")
            raise ValidationError(f"Malformed lifecycle event: {e}") from e

        logger.info(
            f"Consumer {self.consumer_id} received {event.status} event for report {event.report_id}"
        )

        session = db.SessionLocal()
        try:
            manager = JobLifecycleManager(session)
            return manager.apply_event(event)
        except IllegalTransitionError as e:
            logger.error(f"Consumer {self.consumer_id} dropped out-of-order event: {e}")
            raise
        except ReportJobNotFoundError:
            logger.error(
                f"Consumer {self.consumer_id} got event for unknown report {event.report_id}"
            )
            raise
        finally:
            session.close()
