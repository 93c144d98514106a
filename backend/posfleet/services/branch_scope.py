# Overview: Branch-level authorization scope of the acting user.

from __future__ import annotations

from ..errors import ForbiddenError
from ..extensions import db
from ..models import User
from ..permissions import GLOBAL_ROLES


def is_global(actor: User) -> bool:
    return actor.role in GLOBAL_ROLES


def authorized_branch_ids(actor: User) -> set[int] | None:
    """
    Branches the actor may act for.

    None means unrestricted (global role); otherwise the actor's own branch,
    or the empty set for a branchless non-global user.
    """
    if is_global(actor):
        return None
    if actor.branch_id is None:
        return set()
    return {actor.branch_id}


def can_access_branch(actor: User, branch_id: int | None) -> bool:
    allowed = authorized_branch_ids(actor)
    return allowed is None or branch_id in allowed


def require_branch_access(actor: User, branch_id: int | None, message: str = "Not authorized for this branch") -> None:
    if not can_access_branch(actor, branch_id):
        raise ForbiddenError(message, details={"branch_id": branch_id})


def resolve_branch_filter(actor: User, requested_branch_id: int | None) -> int | None:
    """
    Branch a list endpoint should filter on.

    Global roles may ask for any branch (or none); scoped users always get
    their own branch and may not ask for another one.
    """
    if is_global(actor):
        return requested_branch_id
    if requested_branch_id is not None and requested_branch_id != actor.branch_id:
        raise ForbiddenError("Not authorized for this branch", details={"branch_id": requested_branch_id})
    return actor.branch_id


def apply_branch_filter(query, actor: User, *columns):
    """Restrict `query` to rows where any of `columns` is an authorized branch."""
    allowed = authorized_branch_ids(actor)
    if allowed is None:
        return query
    if not allowed:
        return query.filter(db.false())
    return query.filter(db.or_(*[column.in_(allowed) for column in columns]))
