# Overview: Role permission checks backed by the default matrix plus stored overrides.

"""
Permission resolution is a pure function (permissions.resolve) over two
immutable maps: the built-in DEFAULT_ROLE_PERMISSIONS and a frozen snapshot
of RolePermissionOverride rows. This module only loads the snapshot and
manages override rows.

DESIGN PRINCIPLES:
- Fail closed: unknown roles and unknown codes hold nothing
- Override > default, in both directions (grant and revoke)
- MANAGE_PERMISSIONS cannot be revoked from SUPER_ADMIN
"""

from __future__ import annotations

from typing import Mapping

from ..errors import ValidationError
from ..extensions import db
from ..models import RolePermissionOverride, User
from ..permissions import (
    ALL_ROLES,
    Role,
    freeze_overrides,
    get_all_permission_codes,
    resolve,
    validate_permission_code,
)


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""

    def __init__(self, permission_code: str):
        super().__init__(f"Missing permission {permission_code}")
        self.permission_code = permission_code


def load_overrides(role: str | None = None) -> Mapping[tuple[str, str], bool]:
    query = db.session.query(RolePermissionOverride)
    if role is not None:
        query = query.filter(RolePermissionOverride.role == role)
    return freeze_overrides(query.all())


def user_has_permission(user: User, permission_code: str) -> bool:
    return resolve(user.role, permission_code, load_overrides(user.role))


def require_permission(user: User, permission_code: str) -> None:
    if not user_has_permission(user, permission_code):
        raise PermissionDeniedError(permission_code)


def get_role_permissions(role: str) -> set[str]:
    overrides = load_overrides(role)
    return {code for code in get_all_permission_codes() if resolve(role, code, overrides)}


def set_override(role: str, permission_code: str, allowed: bool) -> RolePermissionOverride:
    """Create or update the override for (role, permission). Caller commits."""
    if role not in ALL_ROLES:
        raise ValidationError(f"Unknown role: {role}")
    if not validate_permission_code(permission_code):
        raise ValidationError(f"Unknown permission: {permission_code}")
    if role == Role.SUPER_ADMIN and permission_code == "MANAGE_PERMISSIONS" and not allowed:
        raise ValidationError("MANAGE_PERMISSIONS cannot be revoked from SUPER_ADMIN")

    override = (
        db.session.query(RolePermissionOverride)
        .filter_by(role=role, permission_code=permission_code)
        .first()
    )
    if override is None:
        override = RolePermissionOverride(role=role, permission_code=permission_code, allowed=allowed)
        db.session.add(override)
    else:
        override.allowed = allowed
    return override


def clear_override(role: str, permission_code: str) -> bool:
    deleted = (
        db.session.query(RolePermissionOverride)
        .filter_by(role=role, permission_code=permission_code)
        .delete()
    )
    return bool(deleted)
