# Overview: Utility functions for permission lookups and resolution.

from types import MappingProxyType
from typing import Mapping

from .definitions import PERMISSION_DEFINITIONS
from .roles import DEFAULT_ROLE_PERMISSIONS

EMPTY_OVERRIDES = MappingProxyType({})


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category):
    """Get all permissions in a category."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def freeze_overrides(rows) -> Mapping[tuple[str, str], bool]:
    """Build the immutable (role, code) -> allowed map from override rows."""
    return MappingProxyType({(row.role, row.permission_code): bool(row.allowed) for row in rows})


def resolve(
    role: str,
    permission: str,
    overrides: Mapping[tuple[str, str], bool] = EMPTY_OVERRIDES,
    defaults: Mapping[str, frozenset] = DEFAULT_ROLE_PERMISSIONS,
) -> bool:
    """
    Decide whether `role` holds `permission`.

    An explicit override (grant or revoke) always wins; otherwise the
    built-in default matrix decides. Unknown roles hold nothing.
    """
    key = (role, permission)
    if key in overrides:
        return overrides[key]
    return permission in defaults.get(role, frozenset())
