from __future__ import annotations

from types import MappingProxyType

import pytest

from app.platform.security.capabilities import (
    DEFAULT_CAPABILITIES,
    Action,
    ResourceKind,
    build_default_capabilities,
    covers,
    validate_capability_table,
)
from app.platform.security.errors import ConfigurationError
from app.platform.security.identity import Identity, Role
from app.platform.security.policies import (
    CapabilityPolicyBackend,
    allows,
    capability_matrix,
    denial_message,
    get_policy_backend,
    set_policy_backend,
)


def _identity(role: Role, *, organization_id: str | None = "org-1", is_active: bool = True) -> Identity:
    return Identity(id=f"user-{role.value}", role=role, organization_id=organization_id, is_active=is_active)


def test_default_table_is_complete_and_closed() -> None:
    validate_capability_table(DEFAULT_CAPABILITIES)

    for role in Role:
        for resource in ResourceKind:
            assert (role, resource) in DEFAULT_CAPABILITIES


def test_inactive_identity_is_denied_everything() -> None:
    for role in Role:
        inactive = _identity(role, is_active=False)
        for resource in ResourceKind:
            for action in Action:
                assert allows(inactive, resource, action) is False


def test_unauthenticated_identity_is_denied() -> None:
    assert allows(None, ResourceKind.CUSTOMERS, Action.VIEW) is False
    assert capability_matrix(None)[ResourceKind.CUSTOMERS.value] == []


def test_manage_implies_every_action() -> None:
    table = build_default_capabilities()
    backend = CapabilityPolicyBackend(table)
    for role in Role:
        identity = _identity(role)
        for resource in ResourceKind:
            if backend.is_allowed(identity, resource, Action.MANAGE):
                for action in Action:
                    assert backend.is_allowed(identity, resource, action)


def test_member_capabilities() -> None:
    member = _identity(Role.MEMBER)

    assert allows(member, ResourceKind.INVOICES, Action.VIEW)
    assert allows(member, ResourceKind.INVOICES, Action.CREATE)
    assert not allows(member, ResourceKind.INVOICES, Action.DELETE)
    assert allows(member, ResourceKind.TASKS, Action.EDIT)
    assert not allows(member, ResourceKind.REPORTS, Action.VIEW)
    assert not allows(member, ResourceKind.USERS, Action.VIEW)


def test_owner_and_admin_organization_access() -> None:
    assert allows(_identity(Role.OWNER), ResourceKind.ORGANIZATIONS, Action.EDIT)
    assert not allows(_identity(Role.OWNER), ResourceKind.ORGANIZATIONS, Action.DELETE)
    assert allows(_identity(Role.ADMIN), ResourceKind.ORGANIZATIONS, Action.VIEW)
    assert not allows(_identity(Role.ADMIN), ResourceKind.ORGANIZATIONS, Action.EDIT)


def test_elevated_roles_hold_full_capabilities() -> None:
    for role in (Role.SUPER_ADMIN, Role.SUPER_USER):
        identity = _identity(role, organization_id=None)
        for resource in ResourceKind:
            assert allows(identity, resource, Action.MANAGE)


def test_unknown_resource_or_action_is_denied() -> None:
    owner = _identity(Role.OWNER)

    assert allows(owner, "spaceships", Action.VIEW) is False
    assert allows(owner, ResourceKind.CUSTOMERS, "launch") is False
    assert allows(owner, "customers", "view") is True


def test_capability_matrix_expands_manage() -> None:
    matrix = capability_matrix(_identity(Role.ADMIN))

    assert matrix["customers"] == ["view", "create", "edit", "delete", "manage"]
    assert matrix["organizations"] == ["view"]


def test_denial_message_text() -> None:
    assert denial_message(ResourceKind.INVOICES, Action.DELETE) == "You don't have permission to delete invoices."


def test_covers_follows_action_order() -> None:
    assert covers(Action.DELETE, Action.EDIT)
    assert covers(Action.EDIT, Action.VIEW)
    assert not covers(Action.CREATE, Action.EDIT)
    assert not covers(Action.VIEW, Action.CREATE)


def test_incomplete_table_fails_validation() -> None:
    rules = dict(DEFAULT_CAPABILITIES)
    del rules[(Role.MEMBER, ResourceKind.REPORTS)]

    with pytest.raises(ConfigurationError, match="member:reports"):
        CapabilityPolicyBackend(MappingProxyType(rules))


def test_table_missing_implied_action_fails_validation() -> None:
    rules = dict(DEFAULT_CAPABILITIES)
    rules[(Role.MEMBER, ResourceKind.INVOICES)] = frozenset({Action.DELETE})

    with pytest.raises(ConfigurationError, match="without implied actions"):
        validate_capability_table(MappingProxyType(rules))


def test_policy_backend_can_be_swapped() -> None:
    original = get_policy_backend()

    class DenyAll:
        def is_allowed(self, identity, resource, action) -> bool:  # type: ignore[no-untyped-def]
            return False

        def permitted_actions(self, identity, resource) -> frozenset[Action]:  # type: ignore[no-untyped-def]
            return frozenset()

    set_policy_backend(DenyAll())
    try:
        assert allows(_identity(Role.OWNER), ResourceKind.CUSTOMERS, Action.VIEW) is False
    finally:
        set_policy_backend(original)
