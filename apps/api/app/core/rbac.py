import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status

from app.core.context import get_security_context
from app.metrics import observe_authz_decision
from app.platform.security.capabilities import Action, ResourceKind
from app.platform.security.context import SecurityContext
from app.platform.security.policies import denial_message


logger = logging.getLogger("app.security.authz")


def require_authenticated(ctx: SecurityContext = Depends(get_security_context)) -> SecurityContext:
    if ctx.identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


def require_permission(
    resource: ResourceKind,
    action: Action,
    *,
    needs_scope: bool = False,
) -> Callable[[SecurityContext], Awaitable[SecurityContext]]:
    async def checker(ctx: SecurityContext = Depends(require_authenticated)) -> SecurityContext:
        allowed = ctx.allows(resource, action)
        observe_authz_decision(resource=resource.value, action=action.value, allowed=allowed)
        if not allowed:
            logger.info(
                "authz.denied",
                extra={
                    "subject_id": ctx.subject_id,
                    "role": ctx.identity.role.value if ctx.identity else None,
                    "resource": resource.value,
                    "action": action.value,
                    "outcome": "deny",
                },
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=denial_message(resource, action))

        if needs_scope and ctx.scope is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No organization scope for this session")
        return ctx

    return checker


def require_elevated_session(ctx: SecurityContext = Depends(require_authenticated)) -> SecurityContext:
    if ctx.identity is None or not ctx.identity.is_elevated or not ctx.elevated_session_valid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Elevated session required")
    return ctx
