from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.core.auth import get_current_session
from app.core.database import get_db
from app.platform.security.context import SecurityContext, build_security_context
from app.platform.security.elevated import elevated_sessions
from app.platform.security.identity import SessionSnapshot
from app.records.models import Organization


ELEVATED_SESSION_HEADER = "x-elevated-session"
ORGANIZATION_HEADER = "x-organization-id"


async def get_security_context(
    request: Request,
    session: SessionSnapshot = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> SecurityContext:
    """Build the request's security context once; later lookups reuse ``request.state.security``.

    An elevated caller with a valid session may send ``X-Organization-Id`` to work inside a
    single tenant instead of across all of them.
    """

    cached = getattr(request.state, "security", None)
    if isinstance(cached, SecurityContext):
        return cached

    elevated_valid = False
    identity = session.identity
    if identity is not None and identity.is_elevated and identity.is_active:
        presented = request.headers.get(ELEVATED_SESSION_HEADER) or None
        elevated_valid = await elevated_sessions.verify(identity.id, presented)

    selected = (request.headers.get(ORGANIZATION_HEADER) or "").strip() or None
    if selected is not None and elevated_valid and db.get(Organization, selected) is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Selected organization not found",
        )

    ctx = build_security_context(
        session,
        elevated_session_valid=elevated_valid,
        correlation_id=getattr(request.state, "correlation_id", None),
        selected_organization_id=selected if elevated_valid else None,
    )
    request.state.security = ctx
    return ctx
