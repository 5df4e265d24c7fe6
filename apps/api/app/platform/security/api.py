from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.config import get_settings
from app.core.context import get_security_context
from app.core.events import IDENTITY_LOGOUT, event_bus
from app.core.rbac import require_authenticated
from app.metrics import observe_navigation_redirect
from app.platform.security.context import SecurityContext
from app.platform.security.elevated import elevated_sessions
from app.platform.security.errors import VerificationFailure
from app.platform.security.guards import GuardPaths, NavigationOutcome, navigation_guard, render_guard
from app.platform.security.policies import capability_matrix
from app.platform.security.schemas import (
    CapabilityMatrixRead,
    ElevatedLoginRequest,
    ElevatedSessionRead,
    NavigationDecisionRead,
    PermissionCheckRequest,
    RenderDecisionRead,
)


logger = logging.getLogger("app.security.api")

router = APIRouter(prefix="/api", tags=["security"])


def guard_paths_from_settings() -> GuardPaths:
    settings = get_settings()
    return GuardPaths(
        root=settings.default_redirect_path,
        login=settings.login_path,
        superadmin_login=settings.superadmin_login_path,
        superadmin_dashboard=settings.superadmin_dashboard_path,
    )


def _require_elevated_identity(ctx: SecurityContext = Depends(require_authenticated)) -> SecurityContext:
    if ctx.identity is None or not ctx.identity.is_elevated:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Elevated role required")
    return ctx


@router.get("/navigation", response_model=NavigationDecisionRead)
def check_navigation(
    path: str = Query(min_length=1),
    resource: str | None = None,
    action: str = "view",
    redirect_to: str | None = None,
    ctx: SecurityContext = Depends(get_security_context),
) -> NavigationDecisionRead:
    decision = navigation_guard(
        ctx.session,
        path,
        resource=resource,
        action=action,
        redirect_to=redirect_to,
        elevated_session_valid=ctx.elevated_session_valid,
        paths=guard_paths_from_settings(),
    )
    if decision.outcome == NavigationOutcome.REDIRECT and decision.reason:
        observe_navigation_redirect(decision.reason)
        logger.info(
            "navigation.redirect",
            extra={"subject_id": ctx.subject_id, "path": path, "reason": decision.reason},
        )
    return NavigationDecisionRead(**decision.to_dict())


@router.get("/permissions", response_model=CapabilityMatrixRead)
def list_permissions(ctx: SecurityContext = Depends(get_security_context)) -> CapabilityMatrixRead:
    identity = ctx.identity
    return CapabilityMatrixRead(
        role=identity.role.value if identity is not None else None,
        capabilities=capability_matrix(identity),
    )


@router.post("/permissions/check", response_model=RenderDecisionRead)
def check_permission(
    dto: PermissionCheckRequest,
    ctx: SecurityContext = Depends(get_security_context),
) -> RenderDecisionRead:
    decision = render_guard(ctx.session, dto.resource, dto.action, show_denied=dto.show_denied)
    return RenderDecisionRead(**decision.to_dict())


@router.post("/superadmin/session", response_model=ElevatedSessionRead, status_code=status.HTTP_201_CREATED)
async def acquire_elevated_session(
    dto: ElevatedLoginRequest,
    ctx: SecurityContext = Depends(_require_elevated_identity),
) -> ElevatedSessionRead:
    try:
        token = await elevated_sessions.acquire(ctx.subject_id, dto.username, dto.password)
    except VerificationFailure as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return ElevatedSessionRead(state=elevated_sessions.state(ctx.subject_id).value, valid=True, token=token)


@router.get("/superadmin/session", response_model=ElevatedSessionRead)
def read_elevated_session(ctx: SecurityContext = Depends(_require_elevated_identity)) -> ElevatedSessionRead:
    return ElevatedSessionRead(
        state=elevated_sessions.state(ctx.subject_id).value,
        valid=ctx.elevated_session_valid,
    )


@router.delete("/superadmin/session", response_model=ElevatedSessionRead)
def revoke_elevated_session(ctx: SecurityContext = Depends(_require_elevated_identity)) -> ElevatedSessionRead:
    elevated_sessions.revoke(ctx.subject_id)
    return ElevatedSessionRead(state=elevated_sessions.state(ctx.subject_id).value, valid=False)


@router.post("/auth/logout")
async def logout(ctx: SecurityContext = Depends(require_authenticated)) -> dict[str, str]:
    await event_bus.publish(
        IDENTITY_LOGOUT,
        {"subject_id": ctx.subject_id, "correlation_id": ctx.correlation_id},
    )
    logger.info("identity.logout", extra={"subject_id": ctx.subject_id, "event_name": IDENTITY_LOGOUT})
    return {"status": "signed_out"}
