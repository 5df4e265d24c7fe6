from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from types import MappingProxyType

from app.platform.security.errors import ConfigurationError
from app.platform.security.identity import Role


class ResourceKind(StrEnum):
    CUSTOMERS = "customers"
    VEHICLES = "vehicles"
    INVOICES = "invoices"
    TASKS = "tasks"
    PARTS = "parts"
    MECHANICS = "mechanics"
    VENDORS = "vendors"
    EXPENSES = "expenses"
    ATTENDANCE = "attendance"
    REPORTS = "reports"
    USERS = "users"
    ORGANIZATIONS = "organizations"
    SETTINGS = "settings"
    SUBSCRIPTION = "subscription"


class Action(StrEnum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    MANAGE = "manage"


# view < create, view < edit; create, edit < delete < manage
_IMPLIED: dict[Action, frozenset[Action]] = {
    Action.VIEW: frozenset(),
    Action.CREATE: frozenset({Action.VIEW}),
    Action.EDIT: frozenset({Action.VIEW}),
    Action.DELETE: frozenset({Action.VIEW, Action.CREATE, Action.EDIT}),
    Action.MANAGE: frozenset({Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE}),
}


def implied_actions(action: Action) -> frozenset[Action]:
    """Actions strictly below ``action`` in the capability order."""

    return _IMPLIED[action]


def covers(granted: Action, required: Action) -> bool:
    return granted == required or required in _IMPLIED[granted]


def parse_resource(value: ResourceKind | str | None) -> ResourceKind | None:
    if isinstance(value, ResourceKind):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ResourceKind(value.strip().lower())
    except ValueError:
        return None


def parse_action(value: Action | str | None) -> Action | None:
    if isinstance(value, Action):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Action(value.strip().lower())
    except ValueError:
        return None


CapabilityTable = Mapping[tuple[Role, ResourceKind], frozenset[Action]]

NONE: frozenset[Action] = frozenset()
VIEW_ONLY = frozenset({Action.VIEW})
CONTRIBUTE = frozenset({Action.VIEW, Action.CREATE})
EDITOR = frozenset({Action.VIEW, Action.CREATE, Action.EDIT})
READ_EDIT = frozenset({Action.VIEW, Action.EDIT})
FULL = frozenset(Action)

_OPERATIONAL = (
    ResourceKind.CUSTOMERS,
    ResourceKind.VEHICLES,
    ResourceKind.INVOICES,
    ResourceKind.TASKS,
    ResourceKind.PARTS,
    ResourceKind.MECHANICS,
    ResourceKind.VENDORS,
    ResourceKind.EXPENSES,
    ResourceKind.ATTENDANCE,
    ResourceKind.REPORTS,
)


def _grant(role: Role, resources: Iterable[ResourceKind], actions: frozenset[Action]) -> dict[tuple[Role, ResourceKind], frozenset[Action]]:
    return {(role, resource): actions for resource in resources}


def build_default_capabilities() -> CapabilityTable:
    rules: dict[tuple[Role, ResourceKind], frozenset[Action]] = {}

    rules.update(_grant(Role.OWNER, _OPERATIONAL, FULL))
    rules.update(_grant(Role.OWNER, (ResourceKind.USERS, ResourceKind.SETTINGS, ResourceKind.SUBSCRIPTION), FULL))
    rules[(Role.OWNER, ResourceKind.ORGANIZATIONS)] = READ_EDIT

    rules.update(_grant(Role.ADMIN, _OPERATIONAL, FULL))
    rules.update(_grant(Role.ADMIN, (ResourceKind.USERS, ResourceKind.SETTINGS, ResourceKind.SUBSCRIPTION), FULL))
    rules[(Role.ADMIN, ResourceKind.ORGANIZATIONS)] = VIEW_ONLY

    rules.update(
        _grant(
            Role.MEMBER,
            (
                ResourceKind.CUSTOMERS,
                ResourceKind.VEHICLES,
                ResourceKind.PARTS,
                ResourceKind.MECHANICS,
                ResourceKind.VENDORS,
                ResourceKind.ORGANIZATIONS,
            ),
            VIEW_ONLY,
        )
    )
    rules[(Role.MEMBER, ResourceKind.INVOICES)] = CONTRIBUTE
    rules[(Role.MEMBER, ResourceKind.TASKS)] = EDITOR
    rules[(Role.MEMBER, ResourceKind.ATTENDANCE)] = CONTRIBUTE
    rules.update(
        _grant(
            Role.MEMBER,
            (
                ResourceKind.EXPENSES,
                ResourceKind.REPORTS,
                ResourceKind.USERS,
                ResourceKind.SETTINGS,
                ResourceKind.SUBSCRIPTION,
            ),
            NONE,
        )
    )

    for role in (Role.SUPER_ADMIN, Role.SUPER_USER):
        rules.update(_grant(role, ResourceKind, FULL))

    return MappingProxyType(rules)


def validate_capability_table(table: CapabilityTable) -> None:
    """Check the table is complete for every role/resource pair and closed under the action order."""

    missing = [f"{role.value}:{resource.value}" for role in Role for resource in ResourceKind if (role, resource) not in table]
    if missing:
        raise ConfigurationError(f"Capability table has no rule for: {', '.join(missing)}")

    for (role, resource), actions in table.items():
        gaps = sorted({implied.value for action in actions for implied in implied_actions(action)} - {a.value for a in actions})
        if gaps:
            raise ConfigurationError(
                f"Capability rule {role.value}:{resource.value} grants {sorted(a.value for a in actions)} "
                f"without implied actions {gaps}"
            )


DEFAULT_CAPABILITIES: CapabilityTable = build_default_capabilities()
