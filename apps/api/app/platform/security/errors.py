from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for scope enforcement failures."""


class ConfigurationError(AuthorizationError):
    """Raised for invariant violations that would otherwise leak tenant data."""


class VerificationFailure(AuthorizationError):
    """Raised when an elevated session cannot be acquired or verified."""

    def __init__(self, message: str, *, reason: str = "rejected") -> None:
        self.reason = reason
        super().__init__(message)


class OutOfScopeError(AuthorizationError):
    """Raised when a record or payload belongs to another organization."""

    def __init__(self, resource: str, organization_id: str | None) -> None:
        self.resource = resource
        self.organization_id = organization_id
        super().__init__(f"Out-of-scope organization_id for resource '{resource}'")
