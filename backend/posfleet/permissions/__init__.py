# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    TRANSFER_PERMISSIONS,
    MACHINE_PERMISSIONS,
    MAINTENANCE_PERMISSIONS,
    APPROVAL_PERMISSIONS,
    SETTLEMENT_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import Role, ALL_ROLES, GLOBAL_ROLES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    EMPTY_OVERRIDES,
    freeze_overrides,
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    resolve,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "TRANSFER_PERMISSIONS",
    "MACHINE_PERMISSIONS",
    "MAINTENANCE_PERMISSIONS",
    "APPROVAL_PERMISSIONS",
    "SETTLEMENT_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "Role",
    "ALL_ROLES",
    "GLOBAL_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "EMPTY_OVERRIDES",
    "freeze_overrides",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "resolve",
    "validate_permission_code",
]
