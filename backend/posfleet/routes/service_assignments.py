# backend/posfleet/routes/service_assignments.py
"""
Service assignment API routes (maintenance center technicians).
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import assignment_service
from ..services.concurrency import commit_session
from ..validation import parse_int, require_fields
from ._helpers import arg_int, arg_upper, error_response, json_body, unexpected_error


service_assignments_bp = Blueprint("service_assignments", __name__, url_prefix="/api/service-assignments")


@service_assignments_bp.route("", methods=["GET"])
@require_auth
@require_permission("VIEW_ASSIGNMENTS")
def list_assignments():
    try:
        filters = {
            "status": arg_upper("status"),
            "technician_id": arg_int("technician_id"),
            "branch_id": arg_int("branch_id"),
            "origin_branch_id": arg_int("origin_branch_id"),
            "serial_number": request.args.get("serial_number"),
        }
        assignments = assignment_service.list_assignments(filters, g.current_user)
        return jsonify({"assignments": [a.to_dict() for a in assignments], "count": len(assignments)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list service assignments")


@service_assignments_bp.route("/my-assignments", methods=["GET"])
@require_auth
def my_assignments():
    try:
        assignments = assignment_service.my_assignments(g.current_user.id)
        return jsonify({"assignments": [a.to_dict() for a in assignments], "count": len(assignments)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list technician assignments")


@service_assignments_bp.route("/<int:assignment_id>", methods=["GET"])
@require_auth
@require_permission("VIEW_ASSIGNMENTS")
def get_assignment(assignment_id: int):
    try:
        assignment = assignment_service.get_assignment(assignment_id, g.current_user)
        return jsonify(assignment.to_dict(include_logs=True)), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load service assignment")


@service_assignments_bp.route("", methods=["POST"])
@require_auth
@require_permission("ASSIGN_TECHNICIAN")
def create_assignment():
    """
    Assign a machine received at the center to a technician.

    Request body:
    {
        "machine_id": int,
        "technician_id": int,
        "notes": str (optional)
    }

    Returns:
        201: Assignment created, machine ASSIGNED
        409: Machine already has an open assignment or cannot be assigned
    """
    try:
        data = require_fields(json_body(), ("machine_id", "technician_id"))
        assignment = assignment_service.assign(
            parse_int(data["machine_id"], "machine_id", required=True),
            parse_int(data["technician_id"], "technician_id", required=True),
            g.current_user,
            notes=data.get("notes"),
        )
        commit_session()
        return jsonify(assignment.to_dict()), 201
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create service assignment")


@service_assignments_bp.route("/<int:assignment_id>/start", methods=["PUT"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def start_assignment(assignment_id: int):
    try:
        assignment = assignment_service.start(assignment_id, g.current_user)
        commit_session()
        return jsonify(assignment.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to start service assignment")


@service_assignments_bp.route("/<int:assignment_id>/update-parts", methods=["PUT"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def update_parts(assignment_id: int):
    """
    Request body:
    {
        "used_parts": [{"part_id": int, "quantity": int, "unit_cost": number (optional)}
                       | {"name": str, "quantity": int, "unit_cost": number}]
    }
    """
    try:
        data = json_body()
        parts = data.get("used_parts", data.get("parts"))
        assignment = assignment_service.update_parts(assignment_id, parts or [], g.current_user)
        commit_session()
        return jsonify(assignment.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update assignment parts")


@service_assignments_bp.route("/<int:assignment_id>/request-approval", methods=["POST"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def request_approval(assignment_id: int):
    try:
        data = json_body()
        assignment = assignment_service.request_approval(
            assignment_id, data.get("parts"), data.get("notes"), g.current_user
        )
        commit_session()
        return jsonify(assignment.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to request approval")


@service_assignments_bp.route("/<int:assignment_id>/complete", methods=["PUT"])
@require_auth
@require_permission("WORK_ASSIGNMENTS")
def complete_assignment(assignment_id: int):
    """
    Request body:
    {
        "resolution": "REPAIRED" | "SCRAPPED" | "REJECTED_REPAIR",
        "action_taken": str (optional)
    }

    Returns:
        200: Assignment COMPLETED, machine READY_FOR_RETURN
        400: Cost not approved (PRECONDITION_FAILED) or bad resolution
        409: Assignment not in a completable status
    """
    try:
        data = json_body()
        assignment = assignment_service.complete(
            assignment_id, data.get("resolution"), data.get("action_taken"), g.current_user
        )
        commit_session()
        return jsonify(assignment.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to complete service assignment")
