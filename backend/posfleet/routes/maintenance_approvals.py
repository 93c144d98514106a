# backend/posfleet/routes/maintenance_approvals.py
"""
Maintenance approval API routes.

Requests come from two places: an assignment asking its origin branch to
approve a repair cost (POST /api/service-assignments/<id>/request-approval),
and batch requests raised here directly for a machine at the center.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import approval_service
from ..services.concurrency import commit_session
from ._helpers import arg_int, arg_upper, error_response, json_body, unexpected_error


maintenance_approvals_bp = Blueprint(
    "maintenance_approvals", __name__, url_prefix="/api/maintenance-approvals"
)


@maintenance_approvals_bp.route("", methods=["GET"])
@require_auth
@require_permission("VIEW_APPROVALS")
def list_requests():
    try:
        filters = {
            "status": arg_upper("status"),
            "branch_id": arg_int("branch_id"),
            "center_branch_id": arg_int("center_branch_id"),
            "variant": arg_upper("variant"),
            "serial_number": request.args.get("serial_number"),
        }
        requests_ = approval_service.list_requests(filters, g.current_user)
        return jsonify({"requests": [r.to_dict() for r in requests_], "count": len(requests_)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list approval requests")


@maintenance_approvals_bp.route("/pending-count", methods=["GET"])
@require_auth
@require_permission("VIEW_APPROVALS")
def pending_count():
    try:
        count = approval_service.pending_count(arg_int("branch_id"), g.current_user)
        return jsonify({"count": count}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to count pending approvals")


@maintenance_approvals_bp.route("/<int:request_id>", methods=["GET"])
@require_auth
@require_permission("VIEW_APPROVALS")
def get_request(request_id: int):
    try:
        return jsonify(approval_service.get_request(request_id, g.current_user).to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load approval request")


@maintenance_approvals_bp.route("", methods=["POST"])
@require_auth
@require_permission("REQUEST_APPROVAL")
def create_request():
    """
    Raise a batch approval request for a machine at the center.

    Request body:
    {
        "machine_id": int | "serial_number": str,
        "parts": [{"part_id": int, "quantity": int}, ...] (optional),
        "cost": number (optional, overrides the parts total),
        "target_branch_id": int (optional, defaults to the machine's origin),
        "notes": str (optional)
    }

    Returns:
        201: Request created
        409: A pending request already exists for this machine
    """
    try:
        approval = approval_service.create_batch_request(json_body(), g.current_user)
        commit_session()
        return jsonify(approval.to_dict()), 201
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create approval request")


def _respond(request_id: int, decision: str):
    try:
        data = json_body()
        approval = approval_service.respond(
            request_id, decision, g.current_user, reason=data.get("reason") or data.get("rejection_reason")
        )
        commit_session()
        return jsonify(approval.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to respond to approval request")


@maintenance_approvals_bp.route("/<int:request_id>/approve", methods=["PUT"])
@require_auth
@require_permission("RESPOND_APPROVAL")
def approve_request(request_id: int):
    return _respond(request_id, approval_service.REQUEST_STATUS_APPROVED)


@maintenance_approvals_bp.route("/<int:request_id>/reject", methods=["PUT"])
@require_auth
@require_permission("RESPOND_APPROVAL")
def reject_request(request_id: int):
    return _respond(request_id, approval_service.REQUEST_STATUS_REJECTED)
