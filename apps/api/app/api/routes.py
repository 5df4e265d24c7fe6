from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.core.config import get_settings
from app.core.rbac import require_authenticated
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.api import router as security_router
from app.platform.security.capabilities import Action, ResourceKind
from app.platform.security.context import SecurityContext
from app.platform.security.policies import capability_matrix, denial_message
from app.platform.security.schemas import IdentityRead, MeRead
from app.platform.security.scope import describe_scope
from app.records.api import (
    customers_router,
    invoices_router,
    organizations_router,
    tasks_router,
    vehicles_router,
)

router = APIRouter()
router.include_router(security_router)
router.include_router(organizations_router)
router.include_router(customers_router)
router.include_router(vehicles_router)
router.include_router(invoices_router)
router.include_router(tasks_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"], response_model=MeRead)
def me(ctx: SecurityContext = Depends(require_authenticated)) -> MeRead:
    identity = ctx.identity
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return MeRead(
        identity=IdentityRead(
            id=identity.id,
            role=identity.role.value,
            organization_id=identity.organization_id,
            email=identity.email,
            is_active=identity.is_active,
        ),
        scope=describe_scope(ctx.scope),
        elevated_session_valid=ctx.elevated_session_valid,
        capabilities=capability_matrix(identity),
    )


@router.get("/metrics", tags=["system"])
def metrics(ctx: SecurityContext = Depends(require_authenticated)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not ctx.allows(ResourceKind.REPORTS, Action.VIEW):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=denial_message(ResourceKind.REPORTS, Action.VIEW),
        )
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
