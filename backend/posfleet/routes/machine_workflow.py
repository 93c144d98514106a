# backend/posfleet/routes/machine_workflow.py
"""
Machine lifecycle API routes: manual transitions, center board, history.
"""
from flask import Blueprint, g, jsonify

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import branch_scope, machine_state_service
from ..services.concurrency import commit_session
from ._helpers import arg_int, error_response, json_body, unexpected_error


machine_workflow_bp = Blueprint("machine_workflow", __name__, url_prefix="/api/machine-workflow")


@machine_workflow_bp.route("/<int:machine_id>/transition", methods=["POST"])
@require_auth
@require_permission("TRANSITION_MACHINE")
def transition(machine_id: int):
    """
    Move a machine along the lifecycle graph.

    Request body:
    {
        "status": str,            # target status (AWAITING_APPROVAL accepted)
        "notes": str (optional),
        "payload": {...} (optional, e.g. {"resolution": "REPAIRED"})
    }

    Returns:
        200: Machine after the transition
        400: Unknown status or missing resolution
        404: Machine not found
        409: Edge not allowed, or status changed concurrently
    """
    try:
        data = json_body()
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            payload = {}
        # Ownership and links are managed by transfers and assignments
        payload = {k: v for k, v in payload.items() if k in ("resolution", "origin_branch_id")}
        user = g.current_user
        context = machine_state_service.TransitionContext.for_actor(
            user,
            notes=data.get("notes"),
            payload=payload,
            branch_id=user.branch_id,
            action="MANUAL_TRANSITION",
        )
        machine = machine_state_service.transition(
            machine_id, data.get("status") or data.get("target_status"), context, actor=user
        )
        commit_session()
        return jsonify(machine.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to transition machine")


@machine_workflow_bp.route("/kanban", methods=["GET"])
@require_auth
@require_permission("VIEW_MACHINES")
def kanban():
    try:
        branch_id = branch_scope.resolve_branch_filter(g.current_user, arg_int("branch_id"))
        if branch_id is not None:
            branch_ids = {branch_id}
        else:
            branch_ids = branch_scope.authorized_branch_ids(g.current_user)
        return jsonify(machine_state_service.kanban(branch_ids)), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to build maintenance board")


@machine_workflow_bp.route("/<int:machine_id>/history", methods=["GET"])
@require_auth
@require_permission("VIEW_MACHINES")
def history(machine_id: int):
    try:
        logs = machine_state_service.history(machine_id, g.current_user)
        return jsonify({"machine_id": machine_id, "history": [log.to_dict() for log in logs]}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load machine history")
