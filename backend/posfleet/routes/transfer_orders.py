# backend/posfleet/routes/transfer_orders.py
"""
Inter-branch transfer order API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import transfer_service
from ..services.concurrency import commit_session
from ._helpers import arg_date, arg_int, arg_upper, error_response, json_body, unexpected_error


transfer_orders_bp = Blueprint("transfer_orders", __name__, url_prefix="/api/transfer-orders")


@transfer_orders_bp.route("", methods=["POST"])
@require_auth
@require_permission("CREATE_TRANSFER")
def create_order():
    """
    Create a transfer order.

    Request body:
    {
        "type": "MACHINE" | "SIM" | "SPARE_PART",
        "from_branch_id": int (optional, defaults to the caller's branch),
        "to_branch_id": int,
        "items": ["SERIAL", ...] or [{"part_id": int, "quantity": int}, ...],
        "notes": str (optional)
    }

    Returns:
        201: Order created
        400: Invalid request
        403: Not authorized for the source branch
        409: An item is locked by another pending order
    """
    try:
        order = transfer_service.create_order(json_body(), g.current_user)
        commit_session()
        return jsonify(order.to_dict()), 201
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create transfer order")


@transfer_orders_bp.route("", methods=["GET"])
@require_auth
@require_permission("VIEW_TRANSFERS")
def list_orders():
    try:
        filters = {
            "status": arg_upper("status"),
            "type": arg_upper("type"),
            "branch_id": arg_int("branch_id"),
            "direction": (request.args.get("direction") or "").lower() or None,
            "from_date": arg_date("from_date"),
            "to_date": arg_date("to_date"),
            "q": request.args.get("q"),
            "limit": min(arg_int("limit") or 100, 500),
            "offset": arg_int("offset") or 0,
        }
        orders = transfer_service.list_orders(filters, g.current_user)
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders], "count": len(orders)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list transfer orders")


@transfer_orders_bp.route("/pending", methods=["GET"])
@require_auth
@require_permission("VIEW_TRANSFERS")
def list_pending():
    try:
        orders = transfer_service.list_pending(arg_int("branch_id"), arg_upper("type"), g.current_user)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list pending transfer orders")


@transfer_orders_bp.route("/pending-serials", methods=["GET"])
@require_auth
@require_permission("VIEW_TRANSFERS")
def pending_serials():
    """Serials locked by unresolved items of pending orders (used to grey out pickers)."""
    try:
        serials = transfer_service.get_pending_serials(arg_int("branch_id"), arg_upper("type"), g.current_user)
        return jsonify({"serials": serials}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list pending serials")


@transfer_orders_bp.route("/stats/summary", methods=["GET"])
@require_auth
@require_permission("VIEW_TRANSFERS")
def stats_summary():
    try:
        return jsonify(transfer_service.stats_summary(arg_int("branch_id"), g.current_user)), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to build transfer statistics")


@transfer_orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
@require_permission("VIEW_TRANSFERS")
def get_order(order_id: int):
    try:
        return jsonify(transfer_service.get_order(order_id, g.current_user).to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load transfer order")


@transfer_orders_bp.route("/<int:order_id>/receive", methods=["POST"])
@require_auth
@require_permission("RECEIVE_TRANSFER")
def receive_order(order_id: int):
    """
    Receive a pending order at the destination branch.

    Request body (optional):
    {
        "items": [{"item_id" | "serial_number" | "part_id": ..., "accepted": bool, "notes": str}]
    }
    Omitting "items" accepts every unresolved item.

    Returns:
        200: Items resolved (order COMPLETED once nothing is left)
        403: Caller is not the destination branch
        404: Order not found
        409: Order not pending, or an item already resolved
    """
    try:
        data = json_body()
        order = transfer_service.receive_order(order_id, data.get("items"), g.current_user)
        commit_session()
        return jsonify(order.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to receive transfer order")


@transfer_orders_bp.route("/<int:order_id>/reject", methods=["POST"])
@require_auth
@require_permission("RECEIVE_TRANSFER")
def reject_order(order_id: int):
    try:
        data = json_body()
        order = transfer_service.reject_order(order_id, data.get("reason"), g.current_user)
        commit_session()
        return jsonify(order.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject transfer order")


@transfer_orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_auth
@require_permission("CANCEL_TRANSFER")
def cancel_order(order_id: int):
    try:
        order = transfer_service.cancel_order(order_id, g.current_user)
        commit_session()
        return jsonify(order.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to cancel transfer order")
