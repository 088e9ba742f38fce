"""Utility functions for the report service."""

import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

# 24 random bytes encode to 32 URL-safe characters
TOKEN_BYTES = 24


def utc_now() -> datetime:
    """Get current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_report_id() -> str:
    """Generate a random report ID."""
    return str(uuid.uuid4())


def generate_correlation_id() -> str:
    return uuid.uuid4().hex


def generate_download_token() -> str:
    """Generate an unguessable URL-safe download token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def mask_token(token: Optional[str]) -> str:
    """Shorten a token for log output."""
    if not token:
        return "<none>"
    return f"{token[:6]}..."


def truncate_error_message(message: Optional[str], max_length: int = 1000) -> str:
    """Truncate a failure reason to fit the error_message column."""
    if not message:
        return "Unknown error"
    if len(message) > max_length:
        return message[:max_length] + "... (truncated)"
    return message


def calculate_elapsed_seconds(start: datetime, end: Optional[datetime] = None) -> float:
    """Calculate elapsed seconds between two naive UTC datetimes."""
    return ((end or utc_now()) - start).total_seconds()
