# Overview: Password hashing and credential checks.

from __future__ import annotations

import bcrypt

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Branch, User
from ..permissions import ALL_ROLES, GLOBAL_ROLES
from ..time_utils import utcnow

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    role: str,
    *,
    branch_id: int | None = None,
    display_name: str | None = None,
    email: str | None = None,
) -> User:
    """Create a user. Non-global roles must belong to a branch. Caller commits."""
    if role not in ALL_ROLES:
        raise ValidationError(f"Unknown role: {role}")
    if branch_id is None and role not in GLOBAL_ROLES:
        raise ValidationError(f"Role {role} requires a branch")
    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise ValidationError(f"Branch {branch_id} not found")
    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError(f"Username {username} already exists")

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        branch_id=branch_id,
        display_name=display_name,
        email=email,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Updates last_login_at on success.
    """
    user = (
        db.session.query(User)
        .filter(
            db.or_(User.username == username, User.email == username),
            User.is_active.is_(True),
        )
        .first()
    )
    if not user or not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    return user
