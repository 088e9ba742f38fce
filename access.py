"""Principals and the view/download access rule for report jobs."""

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from loguru import logger

from errors import UnauthenticatedError
from models import ReportJob


class Role(str, enum.Enum):
    USER = "USER"
    DISTRICT_ADMIN = "DISTRICT_ADMIN"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, built once per request at the trust boundary."""

    user_id: int
    district_id: Optional[int] = None
    roles: frozenset = field(default_factory=frozenset)
    username: Optional[str] = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles


_USER_ID_CLAIMS = ("user_id", "userId", "id")
_DISTRICT_ID_CLAIMS = ("district_id", "districtId")
_ROLE_CLAIMS = ("roles", "authorities")


def _first_claim(claims: Mapping[str, Any], names: tuple) -> Any:
    for name in names:
        value = claims.get(name)
        if value not in (None, "", []):
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _normalize_role(raw: str) -> Optional[Role]:
    name = raw.strip().upper()
    if name.startswith("ROLE_"):
        name = name[len("ROLE_"):]
    try:
        return Role(name)
    except ValueError:
        return None


def build_principal(claims: Mapping[str, Any]) -> Principal:
    """Normalize verified token claims into a Principal.

    This is the only place that knows about alternative claim names; every
    other component works with the typed Principal. Unknown role names are
    dropped rather than guessed at.
    """
    user_id = _as_int(_first_claim(claims, _USER_ID_CLAIMS))
    if user_id is None:
        raise UnauthenticatedError("Token does not identify a user")

    raw_roles = _first_claim(claims, _ROLE_CLAIMS) or []
    if isinstance(raw_roles, str):
        raw_roles = [raw_roles]

    roles = set()
    for raw in raw_roles:
        role = _normalize_role(str(raw))
        if role is None:
            logger.debug(f"Ignoring unknown role claim '{raw}' for user {user_id}")
            continue
        roles.add(role)

    return Principal(
        user_id=user_id,
        district_id=_as_int(_first_claim(claims, _DISTRICT_ID_CLAIMS)),
        roles=frozenset(roles),
        username=claims.get("sub"),
    )


class AccessGuard:
    """Decides whether a principal may view or download a report job."""

    def can_view(self, principal: Optional[Principal], job: Optional[ReportJob]) -> bool:
        if principal is None or job is None:
            return False
        if principal.user_id == job.user_id:
            return True
        if principal.has_role(Role.ADMIN):
            return True
        return self._is_district_admin_of(principal, job.district_id)

    def can_view_district(self, principal: Optional[Principal], district_id: int) -> bool:
        if principal is None:
            return False
        if principal.has_role(Role.ADMIN):
            return True
        return self._is_district_admin_of(principal, district_id)

    @staticmethod
    def _is_district_admin_of(principal: Principal, district_id: int) -> bool:
        return (
            principal.district_id is not None
            and principal.district_id == district_id
            and principal.has_role(Role.DISTRICT_ADMIN)
        )
