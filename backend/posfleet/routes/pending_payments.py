# Overview: Flask API routes for inter-branch repair debts (pending payments).

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import WorkflowError
from ..services import settlement_service
from ..services.concurrency import commit_session
from ._helpers import arg_int, arg_upper, error_response, json_body, unexpected_error


pending_payments_bp = Blueprint("pending_payments", __name__, url_prefix="/api/pending-payments")


@pending_payments_bp.route("", methods=["GET"])
@require_auth
@require_permission("VIEW_DEBTS")
def list_debts():
    try:
        filters = {
            "status": arg_upper("status"),
            "branch_id": arg_int("branch_id"),
            "center_branch_id": arg_int("center_branch_id"),
            "machine_serial": request.args.get("serial_number"),
        }
        debts = settlement_service.list_debts(filters, g.current_user)
        return jsonify({"debts": [d.to_dict() for d in debts], "count": len(debts)}), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list pending payments")


@pending_payments_bp.route("/summary", methods=["GET"])
@require_auth
@require_permission("VIEW_DEBTS")
def summary():
    try:
        result = settlement_service.summary(
            arg_int("branch_id"), arg_int("center_branch_id"), g.current_user
        )
        return jsonify(result), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to summarize pending payments")


@pending_payments_bp.route("/<int:debt_id>", methods=["GET"])
@require_auth
@require_permission("VIEW_DEBTS")
def get_debt(debt_id: int):
    try:
        return jsonify(settlement_service.get_debt(debt_id, g.current_user).to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load pending payment")


@pending_payments_bp.route("/<int:debt_id>/pay", methods=["PUT"])
@require_auth
@require_permission("PAY_DEBTS")
def pay_debt(debt_id: int):
    """
    Settle a debt in full against a receipt number.

    Request body:
    {
        "receipt_number": str,
        "payment_place": str (optional)
    }

    Returns:
        200: Debt PAID
        400: Missing receipt number
        403: Caller's branch is not the debtor
        409: Receipt already used, or debt already paid
    """
    try:
        data = json_body()
        debt = settlement_service.pay(
            debt_id, data.get("receipt_number"), g.current_user, payment_place=data.get("payment_place")
        )
        commit_session()
        return jsonify(debt.to_dict()), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to record payment")


@pending_payments_bp.route("/<int:debt_id>/installments", methods=["GET"])
@require_auth
@require_permission("VIEW_DEBTS")
def installments(debt_id: int):
    """Split the remaining balance into ?count=N installments (default 1)."""
    try:
        count = arg_int("count")
        plan = settlement_service.installment_plan(debt_id, 1 if count is None else count, g.current_user)
        return jsonify(plan), 200
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to plan installments")
