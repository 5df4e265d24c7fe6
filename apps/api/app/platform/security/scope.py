from __future__ import annotations

from dataclasses import dataclass

from app.platform.security.errors import ConfigurationError
from app.platform.security.identity import Identity


@dataclass(frozen=True, slots=True)
class TenantScope:
    organization_id: str


@dataclass(frozen=True, slots=True)
class UnscopedScope:
    """Cross-tenant visibility, only for elevated roles with a verified elevated session."""


UNSCOPED = UnscopedScope()

Scope = TenantScope | UnscopedScope


def resolve_scope(identity: Identity | None, elevated_session_valid: bool = False) -> Scope | None:
    """Resolve which organization's rows ``identity`` may see.

    ``None`` means no data access at all and must never be read as unscoped.
    Raises ``ConfigurationError`` for a tenant role without an organization id.
    """

    if identity is None or not identity.is_active:
        return None

    if identity.is_elevated:
        if elevated_session_valid:
            return UNSCOPED
        if identity.organization_id:
            return TenantScope(identity.organization_id)
        return None

    if not identity.organization_id:
        raise ConfigurationError(
            f"Identity '{identity.id}' has tenant role '{identity.role.value}' but no organization_id"
        )
    return TenantScope(identity.organization_id)


def scope_kind(scope: Scope | None) -> str:
    if scope is None:
        return "none"
    if isinstance(scope, UnscopedScope):
        return "unscoped"
    return "tenant"


def describe_scope(scope: Scope | None) -> dict[str, str | None]:
    return {
        "kind": scope_kind(scope),
        "organization_id": scope.organization_id if isinstance(scope, TenantScope) else None,
    }
