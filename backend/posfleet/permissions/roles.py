# Overview: Built-in roles and their default permission matrix.

from types import MappingProxyType

from .definitions import PERMISSION_DEFINITIONS


class Role:
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGEMENT = "MANAGEMENT"
    BRANCH_ADMIN = "BRANCH_ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    ADMIN_AFFAIRS = "ADMIN_AFFAIRS"
    CS_SUPERVISOR = "CS_SUPERVISOR"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    CS_AGENT = "CS_AGENT"
    BRANCH_TECH = "BRANCH_TECH"
    CENTER_MANAGER = "CENTER_MANAGER"
    TECHNICIAN = "TECHNICIAN"


ALL_ROLES = frozenset(
    value for key, value in vars(Role).items() if not key.startswith("_")
)

# Roles authorized for every branch; everybody else is scoped to their own.
GLOBAL_ROLES = frozenset({
    Role.SUPER_ADMIN,
    Role.MANAGEMENT,
    Role.BRANCH_ADMIN,
    Role.ACCOUNTANT,
    Role.ADMIN_AFFAIRS,
    Role.CS_SUPERVISOR,
})

_ALL_CODES = frozenset(perm[0] for perm in PERMISSION_DEFINITIONS)

_BRANCH_STAFF = frozenset({
    "VIEW_TRANSFERS", "CREATE_TRANSFER", "RECEIVE_TRANSFER", "CANCEL_TRANSFER",
    "VIEW_MACHINES", "VIEW_APPROVALS", "VIEW_DEBTS", "VIEW_NOTIFICATIONS",
})

_CENTER_STAFF = _BRANCH_STAFF | {
    "TRANSITION_MACHINE", "VIEW_ASSIGNMENTS", "WORK_ASSIGNMENTS", "REQUEST_APPROVAL",
}

DEFAULT_ROLE_PERMISSIONS = MappingProxyType({
    Role.SUPER_ADMIN: _ALL_CODES,
    Role.MANAGEMENT: _ALL_CODES - {"MANAGE_PERMISSIONS"},
    Role.BRANCH_ADMIN: _ALL_CODES - {"MANAGE_PERMISSIONS"},
    Role.ACCOUNTANT: frozenset({
        "VIEW_TRANSFERS", "VIEW_MACHINES", "VIEW_ASSIGNMENTS", "VIEW_APPROVALS",
        "VIEW_DEBTS", "PAY_DEBTS", "VIEW_NOTIFICATIONS",
    }),
    Role.ADMIN_AFFAIRS: _BRANCH_STAFF,
    Role.CS_SUPERVISOR: _BRANCH_STAFF | {"RESPOND_APPROVAL", "VIEW_ASSIGNMENTS"},
    Role.BRANCH_MANAGER: _BRANCH_STAFF | {"RESPOND_APPROVAL", "PAY_DEBTS"},
    Role.CS_AGENT: _BRANCH_STAFF,
    Role.BRANCH_TECH: _BRANCH_STAFF,
    Role.CENTER_MANAGER: _CENTER_STAFF | {"ASSIGN_TECHNICIAN"},
    Role.TECHNICIAN: _CENTER_STAFF,
})
