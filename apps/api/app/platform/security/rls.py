from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql import Select
from sqlalchemy.sql.expression import FromClause, Join

from app import audit
from app.core.database import Base
from app.metrics import observe_scope_denial
from app.platform.security.context import SecurityContext
from app.platform.security.errors import AuthorizationError, OutOfScopeError
from app.platform.security.scope import Scope, TenantScope, UnscopedScope


logger = logging.getLogger("app.security.scope")

TENANT_COLUMN = "organization_id"
SCOPE_OPTION = "tenant_scope"


def _tenant_column_names() -> dict[Any, str]:
    return {
        mapper.local_table: getattr(mapper.class_, "__tenant_column__", TENANT_COLUMN)
        for mapper in Base.registry.mappers
    }


def _leaf_froms(from_clause: FromClause) -> Iterator[FromClause]:
    if isinstance(from_clause, Join):
        yield from _leaf_froms(from_clause.left)
        yield from _leaf_froms(from_clause.right)
    else:
        yield from_clause


def _tenant_column_in(from_clause: FromClause, names: dict[Any, str]) -> Any | None:
    # Aliases of a mapped table keep the table under ``element``.
    name = names.get(from_clause) or names.get(getattr(from_clause, "element", None)) or TENANT_COLUMN
    return from_clause.c.get(name)


def apply_scope(query: Select[Any], scope: Scope | None) -> Select[Any]:
    """Narrow ``query`` to the tenant in ``scope``.

    Unscoped leaves the query untouched, an undefined scope matches zero rows, and a
    tenant scope appends ``organization_id == <org>`` for every table the query reads
    from that carries a tenant column, including tables only named in ``select_from``
    or a join. A tenant-scoped query that reads no tenant table matches zero rows.
    Scoping the same query twice to the same tenant is a no-op.
    """

    if isinstance(scope, UnscopedScope):
        return query

    if not isinstance(scope, TenantScope):
        return query.where(false())

    applied = query.get_execution_options().get(SCOPE_OPTION)
    if applied == scope.organization_id:
        return query
    if applied is not None:
        logger.warning(
            "scope.conflicting_tenant",
            extra={"organization_id": scope.organization_id, "reason": f"already scoped to {applied}"},
        )

    names = _tenant_column_names()
    seen: set[Any] = set()
    constrained = 0
    for from_clause in query.get_final_froms():
        for source in _leaf_froms(from_clause):
            if source in seen:
                continue
            seen.add(source)
            column = _tenant_column_in(source, names)
            if column is None:
                continue
            query = query.where(column == scope.organization_id)
            constrained += 1

    if not constrained:
        logger.warning(
            "scope.no_tenant_column",
            extra={"organization_id": scope.organization_id, "reason": "query reads no tenant table"},
        )
        return query.where(false())

    return query.execution_options(**{SCOPE_OPTION: scope.organization_id})


def validate_scope_write(resource: str, payload: dict[str, Any], ctx: SecurityContext) -> str:
    """Return the organization id a write must be stored under, or raise when out of scope."""

    requested = payload.get(TENANT_COLUMN)
    requested_value = str(requested) if requested is not None else None

    if isinstance(ctx.scope, UnscopedScope):
        if requested_value is None:
            raise AuthorizationError(f"organization_id is required for cross-tenant writes to '{resource}'")
        return requested_value

    if not isinstance(ctx.scope, TenantScope):
        _emit_scope_denied(resource=resource, ctx=ctx, organization_id=requested_value, is_read=False)
        raise AuthorizationError(f"No data scope for resource '{resource}'")

    if requested_value is not None and requested_value != ctx.scope.organization_id:
        _emit_scope_denied(resource=resource, ctx=ctx, organization_id=requested_value, is_read=False)
        raise OutOfScopeError(resource, requested_value)

    return ctx.scope.organization_id


def validate_record_scope(resource: str, organization_id: str | None, ctx: SecurityContext) -> None:
    """Reject a loaded record that belongs to a tenant outside ``ctx.scope``."""

    if isinstance(ctx.scope, UnscopedScope):
        return

    if isinstance(ctx.scope, TenantScope) and organization_id == ctx.scope.organization_id:
        return

    _emit_scope_denied(resource=resource, ctx=ctx, organization_id=organization_id, is_read=True)
    raise OutOfScopeError(resource, organization_id)


def _emit_scope_denied(
    *,
    resource: str,
    ctx: SecurityContext,
    organization_id: str | None,
    is_read: bool,
) -> None:
    operation = "read" if is_read else "write"
    observe_scope_denial(resource=resource, operation=operation)

    logger.warning(
        "scope.denied",
        extra={
            "resource": resource,
            "action": operation,
            "subject_id": ctx.subject_id,
            "organization_id": organization_id,
        },
    )
    audit.record(
        actor_id=ctx.subject_id,
        entity_type="security.scope",
        entity_id=resource,
        action="scope.denied",
        organization_id=ctx.organization_id,
        details={
            "resource": resource,
            "operation": operation,
            "requested_organization_id": organization_id,
        },
        correlation_id=ctx.correlation_id,
    )
