"""Bearer token verification at the API boundary."""

from datetime import timedelta
from typing import Iterable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from loguru import logger

from access import Principal, build_principal
from errors import UnauthenticatedError
from settings import settings
from utils import utc_now

bearer_scheme = HTTPBearer(auto_error=False)


def decode_bearer_token(token: str) -> dict:
    """Verify signature and expiry of a bearer token and return its claims."""
    try:
        return jwt.decode(
            token,
            settings.require_jwt_secret(),
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(f"Bearer token rejected: {e}")
        raise UnauthenticatedError("Invalid or expired bearer token") from e


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """FastAPI dependency yielding the authenticated principal."""
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Missing bearer token")
    return build_principal(decode_bearer_token(credentials.credentials))


def create_dev_token(
    user_id: int,
    district_id: Optional[int] = None,
    roles: Iterable[str] = (),
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """Mint a bearer token for local development and tests only."""
    if not settings.is_dev_environment:
        raise RuntimeError("Development tokens are disabled in this environment")
    claims = {
        "sub": str(user_id),
        "user_id": user_id,
        "roles": list(roles),
        "exp": utc_now() + expires_in,
    }
    if district_id is not None:
        claims["district_id"] = district_id
    return jwt.encode(claims, settings.require_jwt_secret(), algorithm=settings.jwt_algorithm)
