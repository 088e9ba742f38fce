"""Background sweeper for expired and orphaned download tokens."""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

import db
from db import TokenRepository
from settings import settings
from utils import utc_now


@dataclass(frozen=True)
class SweepResult:
    expired: int
    orphaned: int

    @property
    def total(self) -> int:
        return self.expired + self.orphaned


class ExpirySweeper:
    """Periodically deletes tokens that can no longer be redeemed."""

    def __init__(
        self,
        interval_sec: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.running = False
        self.interval = interval_sec or settings.token_sweep_interval_sec
        self.clock = clock
        self.last_run: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    def run_once(self) -> SweepResult:
        """Delete expired tokens and tokens of deleted reports."""
        session = db.SessionLocal()
        try:
            repo = TokenRepository(session)
            expired = repo.delete_expired(self.clock())
            orphaned = repo.delete_orphaned()
        finally:
            session.close()

        result = SweepResult(expired=expired, orphaned=orphaned)
        if result.total > 0:
            logger.info(
                f"Swept download tokens: expired={result.expired}, orphaned={result.orphaned}"
            )
        self.last_run = time.time()
        return result

    async def start(self):
        """Start the sweeper loop."""
        logger.info(f"Starting token sweeper (interval={self.interval}s)")
        self.running = True
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        """Stop the sweeper loop."""
        logger.info("Stopping token sweeper")
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self):
        while self.running:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.exception(f"Token sweep failed, retrying next interval: {e}")
            await asyncio.sleep(self.interval)


# Global sweeper instance
sweeper = ExpirySweeper()
