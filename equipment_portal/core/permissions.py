"""
Role → capability lookup table

The authorization gate and the display layer both read this table, so a role
can never see an action it is not allowed to perform and vice versa.
"""
import enum
from typing import Dict, FrozenSet


class Role(str, enum.Enum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"


class Capability:
    EQUIPMENT_READ = "equipment:read"
    EQUIPMENT_MANAGE = "equipment:manage"
    REQUEST_CREATE = "request:create"
    REQUEST_READ_OWN = "request:read_own"
    REQUEST_READ_ALL = "request:read_all"
    REQUEST_DECIDE = "request:decide"
    REQUEST_RETURN = "request:return"
    STATS_READ = "stats:read"


_BORROWER = frozenset({
    Capability.EQUIPMENT_READ,
    Capability.REQUEST_CREATE,
    Capability.REQUEST_READ_OWN,
})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[str]] = {
    Role.STUDENT: _BORROWER,
    Role.STAFF: _BORROWER,
    Role.ADMIN: frozenset({
        Capability.EQUIPMENT_READ,
        Capability.EQUIPMENT_MANAGE,
        Capability.REQUEST_READ_OWN,
        Capability.REQUEST_READ_ALL,
        Capability.REQUEST_DECIDE,
        Capability.REQUEST_RETURN,
        Capability.STATS_READ,
    }),
}


def capabilities_for(role: str) -> FrozenSet[str]:
    """Capabilities granted to a role; unknown roles get none"""
    try:
        return ROLE_CAPABILITIES[Role(role)]
    except ValueError:
        return frozenset()


def has_capability(role: str, capability: str) -> bool:
    return capability in capabilities_for(role)


def roles_with(capability: str) -> FrozenSet[Role]:
    """The allowed role set of an operation"""
    return frozenset(role for role, caps in ROLE_CAPABILITIES.items() if capability in caps)
