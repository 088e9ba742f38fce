"""Download token issuance and redemption.

Tokens stay redeemable until they expire, so a user can retry an interrupted
download with the same link. Each issue() call mints a new token; existing
tokens are never extended.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from db import TokenRepository
from errors import TokenExpiredError, TokenNotFoundError, ValidationError
from lifecycle import JobLifecycleManager
from models import DownloadToken
from settings import settings
from utils import generate_download_token, mask_token, utc_now


@dataclass(frozen=True)
class ResolvedDownload:
    report_id: str
    result_location: str
    filename: Optional[str] = None


class TokenIssuer:
    """Mints, validates and revokes download tokens for completed reports."""

    def __init__(
        self,
        db: Session,
        lifecycle: Optional[JobLifecycleManager] = None,
        clock: Callable[[], datetime] = utc_now,
        default_ttl: Optional[timedelta] = None,
    ):
        self.tokens = TokenRepository(db)
        self.lifecycle = lifecycle or JobLifecycleManager(db, clock=clock)
        self.clock = clock
        self.default_ttl = default_ttl or timedelta(seconds=settings.download_token_ttl_sec)

    def issue(
        self, report_id: str, ttl: Optional[Union[timedelta, int, float]] = None
    ) -> DownloadToken:
        """Mint a fresh token for a COMPLETED report."""
        ttl = self._coerce_ttl(ttl)
        job = self.lifecycle.require_ready(report_id)

        now = self.clock()
        token = self.tokens.create_token(
            {
                "token": generate_download_token(),
                "report_id": job.report_id,
                "user_id": job.user_id,
                "district_id": job.district_id,
                "expires_at": now + ttl,
                "created_at": now,
                "access_count": 0,
            }
        )
        logger.info(
            f"Issued download token {mask_token(token.token)} for report {report_id}, "
            f"expires_at={token.expires_at.isoformat()}"
        )
        return token

    def redeem(self, token: str) -> str:
        """Validate a token and return the report it is bound to."""
        record = self.tokens.get_token(token)
        if record is None:
            logger.warning(f"Download token not found: {mask_token(token)}")
            raise TokenNotFoundError(mask_token(token))

        now = self.clock()
        if now >= record.expires_at:
            self.tokens.delete_token(token)
            logger.warning(
                f"Download token expired: {mask_token(token)}, "
                f"expires_at={record.expires_at.isoformat()}"
            )
            raise TokenExpiredError(mask_token(token))

        report_id = record.report_id
        # Swept or expired since the read above
        if not self.tokens.record_access(token, now):
            logger.warning(f"Download token expired during redemption: {mask_token(token)}")
            raise TokenExpiredError(mask_token(token))

        logger.info(f"Download token {mask_token(token)} redeemed for report {report_id}")
        return report_id

    def resolve(self, token: str) -> ResolvedDownload:
        """Redeem a token and return the stored location of its report."""
        report_id = self.redeem(token)
        job = self.lifecycle.require_ready(report_id)
        return ResolvedDownload(
            report_id=report_id,
            result_location=job.result_location,
            filename=job.filename,
        )

    def revoke_for_report(self, report_id: str) -> int:
        """Delete every token bound to ``report_id``."""
        deleted = self.tokens.delete_by_report_id(report_id)
        logger.info(f"Revoked {deleted} download tokens for report {report_id}")
        return deleted

    def _coerce_ttl(self, ttl: Optional[Union[timedelta, int, float]]) -> timedelta:
        if ttl is None:
            return self.default_ttl
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        if ttl <= timedelta(0):
            raise ValidationError("Token lifetime must be positive")
        return ttl
