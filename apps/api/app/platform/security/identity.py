from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    SUPER_ADMIN = "super-admin"
    SUPER_USER = "super-user"


ELEVATED_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.SUPER_USER})

# Spellings issued by the identity provider for the elevated roles.
_ROLE_ALIASES = {
    "superadmin": Role.SUPER_ADMIN,
    "super_admin": Role.SUPER_ADMIN,
    "superuser": Role.SUPER_USER,
    "super_user": Role.SUPER_USER,
}


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in _ROLE_ALIASES:
        return _ROLE_ALIASES[normalized]
    try:
        return Role(normalized)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Identity:
    """Read-only snapshot of the acting user as supplied by the identity provider."""

    id: str
    role: Role
    organization_id: str | None = None
    is_active: bool = True
    email: str | None = None

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Identity together with the provider's readiness flag.

    ``loading`` means the provider has not settled yet; ``identity`` is ``None``
    for an unauthenticated session once loading has finished.
    """

    identity: Identity | None = None
    loading: bool = False


LOADING_SESSION = SessionSnapshot(identity=None, loading=True)
ANONYMOUS_SESSION = SessionSnapshot(identity=None, loading=False)
