import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings
from app.platform.security.identity import ANONYMOUS_SESSION, Identity, SessionSnapshot, parse_role


logger = logging.getLogger("app.security.authn")


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header[len("Bearer ") :] if auth_header.startswith("Bearer ") else ""


def identity_from_claims(payload: dict) -> Identity | None:
    subject = payload.get("sub")
    role = parse_role(payload.get("role"))
    if not subject or role is None:
        return None

    organization_id = payload.get("organization_id") or payload.get("org_id")
    is_active = payload.get("is_active", True)
    email = payload.get("email")
    return Identity(
        id=str(subject),
        role=role,
        organization_id=str(organization_id) if organization_id else None,
        is_active=is_active is True,
        email=str(email) if email else None,
    )


def encode_identity_token(identity: Identity, *, expires_in: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    claims = {
        "sub": identity.id,
        "role": identity.role.value,
        "organization_id": identity.organization_id,
        "is_active": identity.is_active,
        "email": identity.email,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_session(request: Request) -> SessionSnapshot:
    token = _bearer_token(request)
    if not token:
        return ANONYMOUS_SESSION

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.info("authn.invalid_token", extra={"reason": "jwt", "error": str(exc)})
        return ANONYMOUS_SESSION

    identity = identity_from_claims(payload)
    if identity is None:
        logger.warning("authn.unrecognized_identity", extra={"reason": "claims", "role": payload.get("role")})
        return ANONYMOUS_SESSION
    return SessionSnapshot(identity=identity)
