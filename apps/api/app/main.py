from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.events import IDENTITY_CHANGED, IDENTITY_LOGOUT, InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel
from app.platform.security.elevated import elevated_sessions
from app.platform.security.errors import (
    AuthorizationError,
    ConfigurationError,
    OutOfScopeError,
    VerificationFailure,
)
from app.platform.security.policies import CapabilityPolicyBackend, set_policy_backend


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False


def _on_identity_ended(event: InternalEvent) -> None:
    subject_id = event.payload.get("subject_id")
    if not isinstance(subject_id, str) or not subject_id:
        return
    elevated_sessions.revoke(subject_id)
    logger.info("elevated.revoked_on_event", extra={"event_name": event.name, "subject_id": subject_id})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe(IDENTITY_LOGOUT, _on_identity_ended)
        event_bus.subscribe(IDENTITY_CHANGED, _on_identity_ended)
        _subscriptions_registered = True
    logger.info("system.started", extra={"event_name": "system.started"})
    yield


def _error_body(message: str) -> dict[str, str | None]:
    return {"detail": message, "correlation_id": get_correlation_id()}


app = FastAPI(title="Workshop API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(OutOfScopeError)
async def _out_of_scope_handler(_request: Request, exc: OutOfScopeError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=_error_body(str(exc)))


@app.exception_handler(ConfigurationError)
async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("security.configuration_error", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Security configuration error"),
    )


@app.exception_handler(VerificationFailure)
async def _verification_failure_handler(_request: Request, exc: VerificationFailure) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=_error_body(str(exc)))


@app.exception_handler(AuthorizationError)
async def _authorization_error_handler(_request: Request, exc: AuthorizationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=_error_body(str(exc)))


settings = get_settings()

# Validates the capability table; a gap fails the import rather than denying at runtime.
set_policy_backend(CapabilityPolicyBackend())

if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
