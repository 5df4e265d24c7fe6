from __future__ import annotations

from threading import Lock
from typing import Protocol

from app.platform.security.capabilities import (
    DEFAULT_CAPABILITIES,
    Action,
    CapabilityTable,
    ResourceKind,
    parse_action,
    parse_resource,
    validate_capability_table,
)
from app.platform.security.identity import Identity


class PolicyBackend(Protocol):
    """Pluggable backend answering role/resource/action questions."""

    def is_allowed(self, identity: Identity | None, resource: ResourceKind | str, action: Action | str) -> bool:
        ...

    def permitted_actions(self, identity: Identity | None, resource: ResourceKind | str) -> frozenset[Action]:
        ...


class CapabilityPolicyBackend:
    """Static role capability table with default-deny and ``manage`` implying every action.

    The table is validated on construction so that an unmapped role/resource pair
    is a startup failure instead of a silent runtime deny.
    """

    def __init__(self, table: CapabilityTable | None = None) -> None:
        self._table = table if table is not None else DEFAULT_CAPABILITIES
        validate_capability_table(self._table)

    def is_allowed(self, identity: Identity | None, resource: ResourceKind | str, action: Action | str) -> bool:
        required = parse_action(action)
        if required is None:
            return False
        granted = self.permitted_actions(identity, resource)
        return required in granted or Action.MANAGE in granted

    def permitted_actions(self, identity: Identity | None, resource: ResourceKind | str) -> frozenset[Action]:
        if identity is None or not identity.is_active:
            return frozenset()
        kind = parse_resource(resource)
        if kind is None:
            return frozenset()
        return self._table.get((identity.role, kind), frozenset())


_POLICY_BACKEND: PolicyBackend = CapabilityPolicyBackend()
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend


def allows(identity: Identity | None, resource: ResourceKind | str, action: Action | str) -> bool:
    """Return whether ``identity`` may perform ``action`` on ``resource``.

    Never raises: unauthenticated or inactive identities and unknown resources or
    actions are denied.
    """

    return get_policy_backend().is_allowed(identity, resource, action)


def permitted_actions(identity: Identity | None, resource: ResourceKind | str) -> frozenset[Action]:
    granted = get_policy_backend().permitted_actions(identity, resource)
    if Action.MANAGE in granted:
        return frozenset(Action)
    return granted


def capability_matrix(identity: Identity | None) -> dict[str, list[str]]:
    """Permitted actions per resource kind, for the client's permission summary."""

    matrix: dict[str, list[str]] = {}
    for resource in ResourceKind:
        actions = permitted_actions(identity, resource)
        matrix[resource.value] = [action.value for action in Action if action in actions]
    return matrix


def denial_message(resource: ResourceKind | str, action: Action | str) -> str:
    return f"You don't have permission to {_label(action)} {_label(resource)}."


def _label(value: ResourceKind | Action | str) -> str:
    return value.value if isinstance(value, (ResourceKind, Action)) else str(value)
