# Overview: Transaction helpers: retry, commit, rollback and compare-and-swap updates.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db

PENDING_NOTIFICATIONS_KEY = "pending_notifications"


def _retry_policy(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        if attempts is None:
            attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)
    return attempts or 3, 0.1 if backoff_base is None else backoff_base


def compare_and_swap(model, entity_id, *, expected: dict, values: dict) -> bool:
    """
    Predicate-qualified UPDATE of a single row.

    Writes `values` to the row with primary key `entity_id` only while every
    column in `expected` still holds the given value. Returns False when no
    row matched, meaning somebody else changed the row first; callers turn
    that into a ConflictError.
    """
    conditions = [model.id == entity_id]
    for column_name, value in expected.items():
        column = getattr(model, column_name)
        conditions.append(column.is_(None) if value is None else column == value)

    stmt = (
        update(model)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def discard_pending_notifications() -> list:
    return db.session.info.pop(PENDING_NOTIFICATIONS_KEY, None) or []


def rollback_session() -> None:
    """Roll back the current transaction and drop anything queued for after-commit."""
    db.session.rollback()
    discard_pending_notifications()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors propagate untouched.
    """
    attempts, backoff_base = _retry_policy(attempts, backoff_base)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            rollback_session()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_session() -> None:
    """
    Commit the current session, then hand queued notifications to the app's
    dispatcher.

    A failed commit is rolled back and re-raised, never retried (the pending
    work is gone after the rollback). Notifications are dispatched only once the
    commit succeeded; delivery problems never reach the caller.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        rollback_session()
        raise ConflictError("Conflicting concurrent update") from exc
    except (OperationalError, StaleDataError):
        rollback_session()
        raise

    pending = discard_pending_notifications()
    if pending:
        from .notification_service import get_dispatcher
        get_dispatcher().dispatch(pending)
