# backend/posfleet/routes/maintenance_center.py
"""
Maintenance-center desk routes: inspection, total loss, return shipping.
"""
from flask import Blueprint, g, jsonify

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import center_service
from ..services.concurrency import commit_session
from ._helpers import arg_int, error_response, json_body, unexpected_error


maintenance_center_bp = Blueprint("maintenance_center", __name__, url_prefix="/api/maintenance-center")


@maintenance_center_bp.route("/machines/<int:machine_id>/inspect", methods=["POST"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def inspect_machine(machine_id: int):
    """
    Record inspection findings.

    Request body:
    {
        "problem_description": str,
        "estimated_cost": number (optional),
        "required_parts": [{"part_id": int, "quantity": int}] (optional)
    }

    Returns:
        200: Machine UNDER_INSPECTION
        400: Missing description or bad estimate
        409: Machine status cannot be inspected
    """
    try:
        machine = center_service.inspect_machine(machine_id, json_body(), g.current_user)
        commit_session()
        return jsonify(machine.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to record inspection")


@maintenance_center_bp.route("/machines/<int:machine_id>/total-loss", methods=["POST"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def total_loss(machine_id: int):
    try:
        data = json_body()
        machine = center_service.declare_total_loss(machine_id, data.get("reason"), g.current_user)
        commit_session()
        return jsonify(machine.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to declare total loss")


@maintenance_center_bp.route("/ready-for-return", methods=["GET"])
@require_auth
@require_permission("VIEW_MACHINES")
def ready_for_return():
    try:
        machines = center_service.ready_for_return(arg_int("center_branch_id"), g.current_user)
        return jsonify({"machines": machines, "count": len(machines)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list machines ready for return")


@maintenance_center_bp.route("/return-package", methods=["POST"])
@require_auth
@require_permission("CREATE_TRANSFER")
def return_package():
    """
    Ship ready machines back to their origin branches, one order per branch.

    Request body:
    {
        "machine_ids": [int],
        "notes": str (optional),
        "center_branch_id": int (optional, defaults to the caller's branch)
    }

    Returns:
        201: {"orders": [...], "count": int}
        400: Machines missing, elsewhere or not READY_FOR_RETURN
        409: A machine is already in a pending transfer order
    """
    try:
        orders = center_service.create_return_package(json_body(), g.current_user)
        commit_session()
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 201
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create return package")
