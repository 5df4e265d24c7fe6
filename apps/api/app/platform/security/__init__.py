from app.platform.security.capabilities import (
    DEFAULT_CAPABILITIES,
    Action,
    ResourceKind,
    validate_capability_table,
)
from app.platform.security.context import SecurityContext, build_security_context
from app.platform.security.elevated import (
    CredentialStore,
    ElevatedSessionManager,
    ElevatedSessionState,
    InMemoryCredentialStore,
    elevated_sessions,
)
from app.platform.security.errors import AuthorizationError, ConfigurationError, OutOfScopeError, VerificationFailure
from app.platform.security.guards import (
    NavigationDecision,
    NavigationOutcome,
    RenderDecision,
    RenderOutcome,
    navigation_guard,
    render_guard,
)
from app.platform.security.identity import Identity, Role, SessionSnapshot
from app.platform.security.policies import (
    CapabilityPolicyBackend,
    PolicyBackend,
    allows,
    capability_matrix,
    get_policy_backend,
    set_policy_backend,
)
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import apply_scope, validate_record_scope, validate_scope_write
from app.platform.security.scope import UNSCOPED, Scope, TenantScope, resolve_scope

__all__ = [
    "Action",
    "AuthorizationError",
    "BaseRepository",
    "CapabilityPolicyBackend",
    "ConfigurationError",
    "CredentialStore",
    "DEFAULT_CAPABILITIES",
    "ElevatedSessionManager",
    "ElevatedSessionState",
    "Identity",
    "InMemoryCredentialStore",
    "NavigationDecision",
    "NavigationOutcome",
    "OutOfScopeError",
    "PolicyBackend",
    "RenderDecision",
    "RenderOutcome",
    "ResourceKind",
    "Role",
    "Scope",
    "SecurityContext",
    "SessionSnapshot",
    "TenantScope",
    "UNSCOPED",
    "VerificationFailure",
    "allows",
    "apply_scope",
    "build_security_context",
    "capability_matrix",
    "elevated_sessions",
    "get_policy_backend",
    "navigation_guard",
    "render_guard",
    "resolve_scope",
    "set_policy_backend",
    "validate_capability_table",
    "validate_record_scope",
    "validate_scope_write",
]
