# Overview: Flask API routes for the caller's notification feed.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import notification_service
from ..services.concurrency import commit_session
from ..validation import parse_bool
from ._helpers import arg_int, error_response, unexpected_error


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@require_auth
@require_permission("VIEW_NOTIFICATIONS")
def list_notifications():
    try:
        unread_only = parse_bool(request.args.get("unread"), "unread", default=False)
        limit = min(arg_int("limit") or 50, 200)
        items = notification_service.list_notifications(g.current_user, unread_only=unread_only, limit=limit)
        return jsonify({
            "notifications": [n.to_dict() for n in items],
            "unread": sum(1 for n in items if not n.is_read),
        }), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list notifications")


@notifications_bp.route("/<int:notification_id>/read", methods=["PUT"])
@require_auth
@require_permission("VIEW_NOTIFICATIONS")
def mark_read(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user)
        commit_session()
        return jsonify(notification.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update notification")
