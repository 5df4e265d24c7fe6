"""Navigation and render guards.

Both guards are pure: they take a session snapshot plus the requested target and
return a decision value. A session that is still loading always yields
``LOADING``; it is never read as allowed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from app.platform.security.capabilities import Action, ResourceKind, parse_action
from app.platform.security.identity import SessionSnapshot
from app.platform.security.policies import allows, denial_message


class NavigationOutcome(StrEnum):
    ALLOW = "allow"
    REDIRECT = "redirect"
    LOADING = "loading"


class RenderOutcome(StrEnum):
    CONTENT = "content"
    FALLBACK = "fallback"
    DENIED = "denied"
    EMPTY = "empty"
    LOADING = "loading"


@dataclass(frozen=True, slots=True)
class RouteRule:
    prefix: str
    resource: ResourceKind
    action: Action = Action.VIEW

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


@dataclass(frozen=True, slots=True)
class GuardPaths:
    root: str = "/"
    login: str = "/auth/login"
    public_prefix: str = "/auth"
    superadmin_prefix: str = "/superadmin"
    superadmin_login: str = "/superadmin/login"
    superadmin_dashboard: str = "/superadmin/dashboard"
    # Reachable while signed in so that reset links keep working.
    recovery_paths: frozenset[str] = field(default_factory=lambda: frozenset({"/auth/reset-password", "/auth/confirm"}))


DEFAULT_ROUTE_RULES: tuple[RouteRule, ...] = (
    RouteRule("/customers", ResourceKind.CUSTOMERS),
    RouteRule("/vehicles/new", ResourceKind.VEHICLES, Action.CREATE),
    RouteRule("/vehicles", ResourceKind.VEHICLES),
    RouteRule("/invoices/new", ResourceKind.INVOICES, Action.CREATE),
    RouteRule("/invoices", ResourceKind.INVOICES),
    RouteRule("/tasks", ResourceKind.TASKS),
    RouteRule("/parts", ResourceKind.PARTS),
    RouteRule("/mechanics", ResourceKind.MECHANICS),
    RouteRule("/vendors", ResourceKind.VENDORS),
    RouteRule("/expenses", ResourceKind.EXPENSES),
    RouteRule("/attendance", ResourceKind.ATTENDANCE),
    RouteRule("/reports", ResourceKind.REPORTS),
    RouteRule("/users", ResourceKind.USERS),
    RouteRule("/settings", ResourceKind.SETTINGS),
    RouteRule("/subscriptions", ResourceKind.SUBSCRIPTION),
    RouteRule("/superadmin", ResourceKind.ORGANIZATIONS, Action.MANAGE),
)


@dataclass(frozen=True, slots=True)
class NavigationDecision:
    outcome: NavigationOutcome
    location: str | None = None
    reason: str | None = None
    from_path: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == NavigationOutcome.ALLOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "location": self.location,
            "reason": self.reason,
            "state": {"from": self.from_path} if self.from_path else None,
        }


@dataclass(frozen=True, slots=True)
class RenderDecision:
    outcome: RenderOutcome
    content: Any = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.outcome.value, "message": self.message}


def _normalize_path(path: str) -> str:
    bare = path.split("?", 1)[0].split("#", 1)[0] or "/"
    if not bare.startswith("/"):
        bare = "/" + bare
    if len(bare) > 1:
        bare = bare.rstrip("/")
    return bare


def _in_section(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def match_route(path: str, rules: tuple[RouteRule, ...] = DEFAULT_ROUTE_RULES) -> RouteRule | None:
    bare = _normalize_path(path)
    candidates = [rule for rule in rules if rule.matches(bare)]
    if not candidates:
        return None
    return max(candidates, key=lambda rule: len(rule.prefix))


def _local_redirect(candidate: str | None, default: str) -> str:
    """Only same-origin absolute paths are accepted as redirect targets."""

    if not candidate or not candidate.startswith("/") or candidate.startswith("//"):
        return default
    if any(ch in candidate for ch in "\r\n\t\\"):
        return default
    return candidate


def _redirect(location: str, reason: str, from_path: str | None = None) -> NavigationDecision:
    return NavigationDecision(NavigationOutcome.REDIRECT, location=location, reason=reason, from_path=from_path)


def navigation_guard(
    session: SessionSnapshot,
    path: str,
    *,
    resource: ResourceKind | str | None = None,
    action: Action | str = Action.VIEW,
    redirect_to: str | None = None,
    elevated_session_valid: bool = False,
    paths: GuardPaths | None = None,
    rules: tuple[RouteRule, ...] = DEFAULT_ROUTE_RULES,
) -> NavigationDecision:
    """Decide whether ``session`` may open ``path`` or where it should be sent instead."""

    paths = paths or GuardPaths()
    fallback = _local_redirect(redirect_to, paths.root)
    bare = _normalize_path(path)

    if session.loading:
        return NavigationDecision(NavigationOutcome.LOADING)

    identity = session.identity

    if _in_section(bare, paths.public_prefix):
        if identity is not None and bare not in paths.recovery_paths:
            return _redirect(paths.root, "public_only", from_path=path)
        return NavigationDecision(NavigationOutcome.ALLOW)

    if bare == paths.superadmin_login:
        return NavigationDecision(NavigationOutcome.ALLOW)

    if identity is None:
        return _redirect(paths.login, "unauthenticated", from_path=path)

    in_superadmin = _in_section(bare, paths.superadmin_prefix)
    if identity.is_elevated and not in_superadmin:
        return _redirect(paths.superadmin_dashboard, "superadmin_section")
    if in_superadmin and not identity.is_elevated:
        return _redirect(paths.root, "not_superadmin")
    if in_superadmin and not elevated_session_valid:
        return _redirect(paths.superadmin_login, "elevated_session_required", from_path=path)

    required_resource: ResourceKind | str | None = resource
    required_action: Action | str = action
    if required_resource is None:
        rule = match_route(bare, rules)
        if rule is not None:
            required_resource, required_action = rule.resource, rule.action

    if required_resource is not None and not allows(identity, required_resource, required_action):
        if _normalize_path(fallback) == bare:
            # Denied on the fallback itself; send to login rather than loop.
            return _redirect(paths.login, "permission_denied", from_path=path)
        return _redirect(fallback, "permission_denied")

    return NavigationDecision(NavigationOutcome.ALLOW)


def render_guard(
    session: SessionSnapshot,
    resource: ResourceKind | str,
    action: Action | str,
    children: Any = None,
    *,
    fallback: Any = None,
    show_denied: bool = False,
) -> RenderDecision:
    """Decide what to render in place of protected content."""

    if session.loading:
        return RenderDecision(RenderOutcome.LOADING)

    if allows(session.identity, resource, action):
        return RenderDecision(RenderOutcome.CONTENT, content=children)

    if fallback is not None:
        return RenderDecision(RenderOutcome.FALLBACK, content=fallback)

    if show_denied:
        label = parse_action(action) or action
        return RenderDecision(RenderOutcome.DENIED, message=denial_message(resource, label))

    return RenderDecision(RenderOutcome.EMPTY)
