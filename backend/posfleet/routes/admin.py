# Overview: Flask API routes for admin operations; read-only entity inspection and role permission overrides.

# backend/posfleet/routes/admin.py
"""
Admin routes.

Provides endpoints for:
- Read-only inspection of workflow records (closed set of entity kinds)
- Audit trail lookup
- Role permission matrix and overrides

All endpoints require authentication and appropriate permissions.
"""
from enum import Enum

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import NotFoundError, ValidationError, WorkflowError
from ..extensions import db
from ..models import (
    ApprovalRequest,
    AuditLog,
    Branch,
    BranchDebt,
    LedgerPayment,
    Machine,
    MachineMovementLog,
    ServiceAssignment,
    SimCard,
    SparePart,
    TransferOrder,
    User,
)
from ..permissions import ALL_ROLES, PERMISSION_DEFINITIONS, get_permission_definition
from ..services import audit_service, permission_service
from ..services.concurrency import commit_session
from ..validation import parse_bool, require_fields
from ._helpers import arg_int, error_response, json_body, unexpected_error

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


class EntityKind(Enum):
    BRANCHES = Branch
    USERS = User
    MACHINES = Machine
    MACHINE_MOVEMENTS = MachineMovementLog
    SIM_CARDS = SimCard
    SPARE_PARTS = SparePart
    TRANSFER_ORDERS = TransferOrder
    SERVICE_ASSIGNMENTS = ServiceAssignment
    APPROVAL_REQUESTS = ApprovalRequest
    BRANCH_DEBTS = BranchDebt
    LEDGER_PAYMENTS = LedgerPayment
    AUDIT_LOGS = AuditLog

    @classmethod
    def parse(cls, value: str) -> "EntityKind":
        key = (value or "").strip().upper().replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            raise NotFoundError(f"Unknown entity kind: {value}") from None


# =============================================================================
# ENTITY INSPECTION
# =============================================================================

@admin_bp.get("/entities")
@require_auth
@require_permission("INSPECT_ENTITIES")
def list_entity_kinds():
    return jsonify({"kinds": [kind.name.lower().replace("_", "-") for kind in EntityKind]})


@admin_bp.get("/entities/<kind>")
@require_auth
@require_permission("INSPECT_ENTITIES")
def list_entities(kind: str):
    """
    Page through one kind of record, newest first.

    Query params:
    - limit: int (default 50, max 500)
    - offset: int (default 0)
    """
    try:
        model = EntityKind.parse(kind).value
        limit = min(arg_int("limit") or 50, 500)
        offset = arg_int("offset") or 0
        query = db.session.query(model)
        total = query.count()
        rows = query.order_by(model.id.desc()).offset(offset).limit(limit).all()
        return jsonify({
            "kind": kind,
            "total": total,
            "items": [row.to_dict() for row in rows],
        })
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to inspect entities")


@admin_bp.get("/entities/<kind>/<int:entity_id>")
@require_auth
@require_permission("INSPECT_ENTITIES")
def get_entity(kind: str, entity_id: int):
    try:
        row = db.session.get(EntityKind.parse(kind).value, entity_id)
        if row is None:
            raise NotFoundError(f"{kind} {entity_id} not found")
        return jsonify(row.to_dict())
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to inspect entity")


@admin_bp.get("/audit-log")
@require_auth
@require_permission("INSPECT_ENTITIES")
def audit_log():
    """
    Query params:
    - entity_type: str (e.g. TRANSFER_ORDER)
    - entity_id: str|int
    - limit: int (default 100)
    """
    try:
        entries = audit_service.list_entries(
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id"),
            limit=min(arg_int("limit") or 100, 500),
        )
        return jsonify({"entries": [e.to_dict() for e in entries]})
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to load audit log")


# =============================================================================
# PERMISSION MANAGEMENT
# =============================================================================

@admin_bp.get("/permissions")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def list_permissions():
    """List permission definitions and the effective permissions of every role."""
    return jsonify({
        "permissions": [get_permission_definition(p[0]) for p in PERMISSION_DEFINITIONS],
        "roles": {role: sorted(permission_service.get_role_permissions(role)) for role in ALL_ROLES},
    })


@admin_bp.put("/roles/<role>/permissions/<permission_code>")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def set_permission_override(role: str, permission_code: str):
    """
    Grant or revoke a permission for a role, overriding the default matrix.

    Request body:
    - allowed: bool (required)
    """
    try:
        data = require_fields(json_body(), ("allowed",))
        allowed = parse_bool(data["allowed"], "allowed")
        override = permission_service.set_override(role.upper(), permission_code.upper(), allowed)
        commit_session()
        return jsonify({"override": override.to_dict()})
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update permission override")


@admin_bp.delete("/roles/<role>/permissions/<permission_code>")
@require_auth
@require_permission("MANAGE_PERMISSIONS")
def clear_permission_override(role: str, permission_code: str):
    """Drop an override so the role falls back to its default."""
    try:
        if not permission_service.clear_override(role.upper(), permission_code.upper()):
            raise ValidationError("No override exists for this role and permission")
        commit_session()
        return jsonify({"message": f"Override for {permission_code.upper()} on {role.upper()} removed"})
    except WorkflowError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to remove permission override")
