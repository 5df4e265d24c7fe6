from __future__ import annotations

import logging
from dataclasses import dataclass

from app import audit
from app.metrics import observe_scope_resolution
from app.platform.security.capabilities import Action, ResourceKind
from app.platform.security.identity import Identity, SessionSnapshot
from app.platform.security.policies import allows
from app.platform.security.scope import Scope, TenantScope, UnscopedScope, resolve_scope, scope_kind


logger = logging.getLogger("app.security.scope")


@dataclass(frozen=True, slots=True)
class SecurityContext:
    """Identity, elevated validity and scope computed once and shared by every check in a request."""

    session: SessionSnapshot
    scope: Scope | None = None
    elevated_session_valid: bool = False
    correlation_id: str | None = None

    @property
    def identity(self) -> Identity | None:
        return self.session.identity

    @property
    def subject_id(self) -> str:
        identity = self.session.identity
        return identity.id if identity is not None else "anonymous"

    @property
    def organization_id(self) -> str | None:
        return self.scope.organization_id if isinstance(self.scope, TenantScope) else None

    @property
    def is_unscoped(self) -> bool:
        return isinstance(self.scope, UnscopedScope)

    def allows(self, resource: ResourceKind | str, action: Action | str) -> bool:
        return allows(self.identity, resource, action)


def build_security_context(
    session: SessionSnapshot,
    *,
    elevated_session_valid: bool = False,
    correlation_id: str | None = None,
    selected_organization_id: str | None = None,
) -> SecurityContext:
    """Resolve the scope for ``session`` and freeze it into a ``SecurityContext``.

    ``selected_organization_id`` narrows an unscoped session to one tenant; it is ignored
    for any other scope. The caller checks that the organization exists.
    Cross-tenant grants are audited here rather than in the resolver, which stays pure.
    """

    identity = session.identity
    scope = None if session.loading else resolve_scope(identity, elevated_session_valid)
    narrowed = isinstance(scope, UnscopedScope) and selected_organization_id is not None
    if narrowed:
        scope = TenantScope(selected_organization_id)
    kind = scope_kind(scope)
    observe_scope_resolution(kind)

    if identity is not None and narrowed:
        audit.record(
            actor_id=identity.id,
            entity_type="security.scope",
            entity_id=identity.id,
            action="scope.selected",
            organization_id=selected_organization_id,
            details={"role": identity.role.value},
            correlation_id=correlation_id,
        )
        logger.info(
            "scope.selected",
            extra={"subject_id": identity.id, "organization_id": selected_organization_id, "scope": kind},
        )
    elif identity is not None and isinstance(scope, UnscopedScope):
        audit.record(
            actor_id=identity.id,
            entity_type="security.scope",
            entity_id=identity.id,
            action="scope.unscoped",
            organization_id=identity.organization_id,
            details={"role": identity.role.value},
            correlation_id=correlation_id,
        )
        logger.info(
            "scope.unscoped",
            extra={"subject_id": identity.id, "role": identity.role.value, "scope": kind},
        )
    elif identity is not None and identity.is_elevated:
        logger.info(
            "scope.elevated_degraded",
            extra={"subject_id": identity.id, "role": identity.role.value, "scope": kind},
        )

    return SecurityContext(
        session=session,
        scope=scope,
        elevated_session_valid=elevated_session_valid,
        correlation_id=correlation_id,
    )
