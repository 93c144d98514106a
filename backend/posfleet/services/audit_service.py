# Overview: Append-only audit trail written inside the caller's transaction.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog, User
from ..time_utils import utcnow


def log_action(
    entity_type: str,
    entity_id,
    action: str,
    details: dict | None = None,
    actor: User | None = None,
    branch_id: int | None = None,
) -> AuditLog:
    """
    Record an audit entry. Never commits; the entry lives or dies with the
    surrounding business transaction.
    """
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        details=details,
        actor_id=actor.id if actor else None,
        actor_name=actor.name if actor else None,
        branch_id=branch_id if branch_id is not None else (actor.branch_id if actor else None),
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def list_entries(entity_type: str | None = None, entity_id=None, limit: int = 100) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    return query.order_by(AuditLog.id.desc()).limit(limit).all()
