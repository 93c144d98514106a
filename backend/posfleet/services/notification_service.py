# Overview: After-commit notification queue and the app-owned dispatcher.

"""
Notifications are fire-and-forget. Services queue them on the current
database session while the business transaction is open; the commit helper
hands them to the application's NotificationDispatcher once the commit
succeeded, and a rollback discards them. A failing sink is logged and
ignored: business state never depends on delivery.
"""

from __future__ import annotations

from typing import Callable

from flask import Flask, current_app

from ..errors import NotFoundError
from ..extensions import db
from ..models import Notification, User
from ..time_utils import utcnow
from .concurrency import PENDING_NOTIFICATIONS_KEY

EXTENSION_KEY = "posfleet.notifications"

# Notification types
TRANSFER_CREATED = "TRANSFER_CREATED"
TRANSFER_RECEIVED = "TRANSFER_RECEIVED"
TRANSFER_REJECTED = "TRANSFER_REJECTED"
TRANSFER_CANCELLED = "TRANSFER_CANCELLED"
ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
APPROVAL_RESPONDED = "APPROVAL_RESPONDED"
DEBT_PAID = "DEBT_PAID"
MACHINE_SCRAPPED = "MACHINE_SCRAPPED"


def persist_notification(notification: dict) -> None:
    """Default sink: store the notification as an in-app inbox row."""
    db.session.add(Notification(created_at=utcnow(), **notification))
    db.session.commit()


class NotificationDispatcher:
    """Delivers queued notifications through a replaceable sink."""

    def __init__(self, sink: Callable[[dict], None] | None = None):
        self.sink = sink or persist_notification

    def dispatch(self, notifications: list[dict]) -> int:
        delivered = 0
        for notification in notifications:
            try:
                self.sink(notification)
                delivered += 1
            except Exception:
                db.session.rollback()
                current_app.logger.warning(
                    "Failed to deliver %s notification", notification.get("type"), exc_info=True
                )
        return delivered


def init_app(app: Flask, sink: Callable[[dict], None] | None = None) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(sink)
    app.extensions[EXTENSION_KEY] = dispatcher
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions[EXTENSION_KEY]


def queue_notification(
    *,
    type: str,
    title: str,
    message: str | None = None,
    branch_id: int | None = None,
    user_id: int | None = None,
    link: str | None = None,
    data: dict | None = None,
) -> dict:
    """Queue a notification for delivery after the current transaction commits."""
    notification = {
        "type": type,
        "title": title,
        "message": message,
        "branch_id": branch_id,
        "user_id": user_id,
        "link": link,
        "data": data,
    }
    db.session.info.setdefault(PENDING_NOTIFICATIONS_KEY, []).append(notification)
    return notification


def pending_notifications() -> list[dict]:
    return list(db.session.info.get(PENDING_NOTIFICATIONS_KEY, []))


def list_notifications(actor: User, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    clauses = [Notification.user_id == actor.id]
    if actor.branch_id is not None:
        clauses.append(db.and_(Notification.branch_id == actor.branch_id, Notification.user_id.is_(None)))
    query = db.session.query(Notification).filter(db.or_(*clauses))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.id.desc()).limit(limit).all()


def mark_read(notification_id: int, actor: User) -> Notification:
    notification = db.session.get(Notification, notification_id)
    visible = notification is not None and (
        notification.user_id == actor.id
        or (notification.user_id is None and notification.branch_id == actor.branch_id)
    )
    if not visible:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    return notification
