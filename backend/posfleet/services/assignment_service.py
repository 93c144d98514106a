# Overview: Technician service assignments at maintenance centers.

"""
Service Assignment Coordinator

LIFECYCLE:
    ASSIGNED -> IN_PROGRESS -> PENDING_APPROVAL -> APPROVED | REJECTED -> COMPLETED
                     \\______________________________________________/
                      (zero-cost repairs complete without approval)

Every step updates the assignment with compare-and-swap on the status that
was read, moves the machine through machine_state_service (which checks the
assignment/machine status mapping), and appends a ServiceAssignmentLog row.

Completing an approved repair with a positive cost opens a BranchDebt: the
machine's origin branch owes the center.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, NotFoundError, PreconditionFailed, ValidationError
from ..extensions import db
from ..models import ApprovalRequest, Branch, Machine, ServiceAssignment, ServiceAssignmentLog, User
from ..time_utils import utcnow
from ..validation import clean_str, parse_int
from . import approval_service, branch_scope, inventory_service, machine_state_service as msm, settlement_service
from .concurrency import compare_and_swap, run_with_retry
from .notification_service import ASSIGNMENT_CREATED, queue_notification

# Assignment status constants
ASSIGNMENT_STATUS_ASSIGNED = "ASSIGNED"
ASSIGNMENT_STATUS_IN_PROGRESS = "IN_PROGRESS"
ASSIGNMENT_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
ASSIGNMENT_STATUS_APPROVED = "APPROVED"
ASSIGNMENT_STATUS_REJECTED = "REJECTED"
ASSIGNMENT_STATUS_COMPLETED = "COMPLETED"
ASSIGNMENT_STATUSES = (
    ASSIGNMENT_STATUS_ASSIGNED,
    ASSIGNMENT_STATUS_IN_PROGRESS,
    ASSIGNMENT_STATUS_PENDING_APPROVAL,
    ASSIGNMENT_STATUS_APPROVED,
    ASSIGNMENT_STATUS_REJECTED,
    ASSIGNMENT_STATUS_COMPLETED,
)

# Approval status constants
APPROVAL_NONE = "NONE"
APPROVAL_PENDING = "PENDING"
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"

APPROVAL_REQUESTABLE_FROM = (ASSIGNMENT_STATUS_IN_PROGRESS, ASSIGNMENT_STATUS_REJECTED)
COMPLETABLE_FROM = (ASSIGNMENT_STATUS_IN_PROGRESS, ASSIGNMENT_STATUS_APPROVED, ASSIGNMENT_STATUS_REJECTED)


def _log(assignment: ServiceAssignment, action: str, actor: User | None, details: dict | None = None) -> None:
    db.session.add(ServiceAssignmentLog(
        assignment_id=assignment.id,
        action=action,
        details=details,
        performed_by=actor.name if actor else None,
        performed_by_id=actor.id if actor else None,
        performed_at=utcnow(),
    ))


def _get_assignment(assignment_id: int) -> ServiceAssignment:
    assignment = db.session.get(ServiceAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Service assignment not found")
    return assignment


def _require_center_access(actor: User, assignment: ServiceAssignment) -> None:
    if actor.id == assignment.technician_id:
        return
    branch_scope.require_branch_access(actor, assignment.branch_id, "Not authorized for this maintenance center")


def _swap_status(assignment: ServiceAssignment, expected: str, values: dict) -> None:
    if not compare_and_swap(ServiceAssignment, assignment.id, expected={"status": expected}, values=values):
        raise ConflictError(
            f"Service assignment {assignment.id} changed concurrently",
            details={"expected": expected},
        )


def _require_status(assignment: ServiceAssignment, allowed: tuple[str, ...], operation: str) -> None:
    if assignment.status not in allowed:
        raise ConflictError(
            f"Cannot {operation} an assignment in status {assignment.status}",
            details={"status": assignment.status, "allowed": list(allowed)},
        )


def _context(actor: User, action: str, **kwargs) -> msm.TransitionContext:
    return msm.TransitionContext.for_actor(actor, action=action, **kwargs)


# =============================================================================
# Commands
# =============================================================================

def assign(machine_id: int, technician_id: int, actor: User, notes: str | None = None) -> ServiceAssignment:
    """
    Hand a machine at a maintenance center to a technician.

    Raises:
        NotFoundError: unknown machine
        ValidationError: machine not at a center, unknown/inactive technician
        ForbiddenError: actor not authorized for the center
        ConflictError: machine already has an open assignment
        TransitionError: machine status does not allow ASSIGNED
    """
    notes = clean_str(notes, "notes")

    def _op() -> ServiceAssignment:
        machine = db.session.get(Machine, machine_id)
        if machine is None:
            raise NotFoundError("Machine not found")
        center = db.session.get(Branch, machine.branch_id)
        if center is None or not center.is_maintenance_center:
            raise ValidationError("Machine is not at a maintenance center")
        branch_scope.require_branch_access(actor, center.id, "Not authorized for this maintenance center")

        open_assignment = (
            db.session.query(ServiceAssignment.id)
            .filter(
                ServiceAssignment.machine_id == machine.id,
                ServiceAssignment.status != ASSIGNMENT_STATUS_COMPLETED,
            )
            .first()
        )
        if open_assignment is not None:
            raise ConflictError(
                f"Machine {machine.serial_number} already has an open assignment",
                details={"assignment_id": open_assignment[0]},
            )

        technician = db.session.get(User, technician_id)
        if technician is None or not technician.is_active:
            raise ValidationError("Technician not found")
        if technician.branch_id != center.id:
            raise ValidationError("Technician does not work at this maintenance center")

        now = utcnow()
        assignment = ServiceAssignment(
            machine_id=machine.id,
            serial_number=machine.serial_number,
            technician_id=technician.id,
            technician_name=technician.name,
            branch_id=center.id,
            origin_branch_id=machine.origin_branch_id,
            status=ASSIGNMENT_STATUS_ASSIGNED,
            used_parts=[],
            total_cost_cents=0,
            approval_status=APPROVAL_NONE,
            notes=notes,
            assigned_by_user_id=actor.id,
            assigned_at=now,
        )
        db.session.add(assignment)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Machine {machine.serial_number} already has an open assignment") from exc

        msm.apply_transition(
            machine,
            msm.ASSIGNED,
            _context(
                actor, "ASSIGNED",
                notes=notes,
                payload={"current_assignment_id": assignment.id, "current_technician_id": technician.id},
            ),
        )
        _log(assignment, "ASSIGNED", actor, {"technician_id": technician.id, "technician_name": technician.name})

        if technician.id != actor.id:
            queue_notification(
                type=ASSIGNMENT_CREATED,
                user_id=technician.id,
                title=f"Machine {machine.serial_number} assigned to you",
                link=f"/service-assignments/{assignment.id}",
                data={"assignment_id": assignment.id},
            )
        return assignment

    return run_with_retry(_op)


def start(assignment_id: int, actor: User) -> ServiceAssignment:
    def _op() -> ServiceAssignment:
        assignment = _get_assignment(assignment_id)
        _require_center_access(actor, assignment)
        _require_status(assignment, (ASSIGNMENT_STATUS_ASSIGNED,), "start")

        _swap_status(assignment, ASSIGNMENT_STATUS_ASSIGNED, {
            "status": ASSIGNMENT_STATUS_IN_PROGRESS,
            "started_at": utcnow(),
        })
        msm.apply_transition(assignment.machine, msm.IN_PROGRESS, _context(actor, "REPAIR_STARTED"))
        _log(assignment, "STARTED", actor)
        return assignment

    return run_with_retry(_op)


def update_parts(assignment_id: int, used_parts, actor: User) -> ServiceAssignment:
    """
    Replace the assignment's used parts and recompute its total.

    When the total moves away from the amount a branch already decided on,
    approval_status falls back to NONE and a new approval is needed. Parts are
    frozen while a request is waiting for the branch's answer.
    """
    def _op() -> ServiceAssignment:
        assignment = _get_assignment(assignment_id)
        _require_center_access(actor, assignment)
        if assignment.status == ASSIGNMENT_STATUS_COMPLETED:
            raise ConflictError("Cannot change parts of a completed assignment")
        if assignment.status == ASSIGNMENT_STATUS_PENDING_APPROVAL:
            raise ConflictError(
                "Cannot change parts while the repair cost awaits approval",
                details={"approval_request_id": assignment.approval_request_id},
            )

        parts, total_cents = inventory_service.price_parts(used_parts)
        values = {"used_parts": parts, "total_cost_cents": total_cents}

        previous_total = assignment.total_cost_cents
        approval_reset = False
        if assignment.approval_status in (APPROVAL_APPROVED, APPROVAL_REJECTED):
            decided = _decided_amount(assignment)
            if decided is None or total_cents != decided:
                values["approval_status"] = APPROVAL_NONE
                approval_reset = True

        if approval_reset and assignment.status == ASSIGNMENT_STATUS_APPROVED:
            # Approved cost changed: back to IN_PROGRESS until a new decision
            if assignment.machine.status == msm.REPAIR_APPROVED:
                msm.apply_transition(assignment.machine, msm.IN_PROGRESS, _context(actor, "APPROVAL_RESET"))
            values["status"] = ASSIGNMENT_STATUS_IN_PROGRESS

        _swap_status(assignment, assignment.status, values)
        _log(assignment, "PARTS_UPDATED", actor, {
            "previous_total_cents": previous_total,
            "total_cost_cents": total_cents,
            "parts": len(parts),
            "approval_reset": approval_reset,
        })
        return assignment

    return run_with_retry(_op)


def _decided_amount(assignment: ServiceAssignment) -> int | None:
    if assignment.approval_request_id is None:
        return None
    request = db.session.get(ApprovalRequest, assignment.approval_request_id)
    return request.proposed_cost_cents if request is not None else None


def request_approval(assignment_id: int, parts, notes: str | None, actor: User) -> ServiceAssignment:
    """
    Ask the machine's origin branch to approve the repair cost.

    `parts` (optional) replaces the used parts before the request is sent.
    """
    notes = clean_str(notes, "notes")

    def _op() -> ServiceAssignment:
        assignment = _get_assignment(assignment_id)
        _require_center_access(actor, assignment)
        _require_status(assignment, APPROVAL_REQUESTABLE_FROM, "request approval for")

        if parts is not None:
            used_parts, total_cents = inventory_service.price_parts(parts)
        else:
            used_parts, total_cents = list(assignment.used_parts or []), assignment.total_cost_cents
        if total_cents <= 0:
            raise ValidationError("Nothing to approve: the repair has no cost")

        request = approval_service.create_request(
            serial_number=assignment.serial_number,
            center_branch_id=assignment.branch_id,
            target_branch_id=assignment.origin_branch_id,
            proposed_parts=used_parts,
            proposed_cost_cents=total_cents,
            actor=actor,
            notes=notes,
            assignment=assignment,
            machine_id=assignment.machine_id,
        )

        _swap_status(assignment, assignment.status, {
            "status": ASSIGNMENT_STATUS_PENDING_APPROVAL,
            "approval_status": APPROVAL_PENDING,
            "approval_request_id": request.id,
            "used_parts": used_parts,
            "total_cost_cents": total_cents,
            "rejection_reason": None,
        })
        msm.apply_transition(
            assignment.machine,
            msm.PENDING_APPROVAL,
            _context(actor, "APPROVAL_REQUESTED", notes=notes, payload={"approval_request_id": request.id}),
        )
        _log(assignment, "APPROVAL_REQUESTED", actor, {"request_id": request.id, "cost_cents": total_cents})
        return assignment

    return run_with_retry(_op)


def _deduct_parts(assignment: ServiceAssignment, actor: User) -> list[dict]:
    """Consume used parts from the center's stock; shortages are skipped, never fatal."""
    skipped = []
    for part in assignment.used_parts or []:
        if part.get("part_id") is None:
            continue
        deducted = inventory_service.adjust_stock(
            assignment.branch_id,
            part["part_id"],
            -int(part["quantity"]),
            movement_type=inventory_service.MOVEMENT_REPAIR_USE,
            reason=f"Repair of {assignment.serial_number}",
            source_type="SERVICE_ASSIGNMENT",
            source_id=assignment.id,
            actor=actor,
        )
        if not deducted:
            skipped.append({"part_id": part["part_id"], "name": part.get("name"), "quantity": part["quantity"]})

    if skipped:
        current_app.logger.info(
            "Skipped stock deduction for assignment %s: %s", assignment.id, skipped
        )
        _log(assignment, "PARTS_DEDUCTION_SKIPPED", actor, {"parts": skipped})
    return skipped


def complete(assignment_id: int, resolution: str | None, action_taken: str | None, actor: User) -> ServiceAssignment:
    """
    Finish the repair: assignment COMPLETED, machine READY_FOR_RETURN.

    Raises:
        ConflictError: assignment not in IN_PROGRESS / APPROVED / REJECTED
        ValidationError: missing or unknown resolution
        PreconditionFailed: a positive cost without an APPROVED decision
    """
    resolution = (clean_str(resolution, "resolution") or "").upper()
    if resolution not in msm.RESOLUTIONS:
        raise ValidationError(f"resolution must be one of: {', '.join(sorted(msm.RESOLUTIONS))}")
    action_taken = clean_str(action_taken, "action_taken")

    def _op() -> ServiceAssignment:
        assignment = _get_assignment(assignment_id)
        _require_center_access(actor, assignment)
        _require_status(assignment, COMPLETABLE_FROM, "complete")

        if assignment.total_cost_cents > 0 and assignment.approval_status != APPROVAL_APPROVED:
            raise PreconditionFailed(
                "Repair cost must be approved by the branch before completion",
                details={"total_cost_cents": assignment.total_cost_cents, "approval_status": assignment.approval_status},
            )
        approved_cents = None
        if assignment.approval_status == APPROVAL_APPROVED and assignment.total_cost_cents > 0:
            approved_cents = _decided_amount(assignment)
            if approved_cents != assignment.total_cost_cents:
                raise PreconditionFailed(
                    "Repair cost differs from the amount the branch approved",
                    details={"total_cost_cents": assignment.total_cost_cents, "approved_cost_cents": approved_cents},
                )

        _swap_status(assignment, assignment.status, {
            "status": ASSIGNMENT_STATUS_COMPLETED,
            "resolution": resolution,
            "action_taken": action_taken,
            "completed_at": utcnow(),
        })
        msm.apply_transition(
            assignment.machine,
            msm.READY_FOR_RETURN,
            _context(actor, "REPAIR_COMPLETED", notes=action_taken, payload={"resolution": resolution}),
        )

        skipped = _deduct_parts(assignment, actor)

        debt_id = None
        if approved_cents:
            debt = settlement_service.open_debt(
                debtor_branch_id=assignment.origin_branch_id,
                creditor_branch_id=assignment.branch_id,
                amount_cents=approved_cents,
                machine_serial=assignment.serial_number,
                assignment_id=assignment.id,
                parts_details=assignment.used_parts,
            )
            debt_id = debt.id

        _log(assignment, "COMPLETED", actor, {
            "resolution": resolution,
            "total_cost_cents": assignment.total_cost_cents,
            "debt_id": debt_id,
            "parts_skipped": len(skipped),
        })
        return assignment

    return run_with_retry(_op)


# =============================================================================
# Center hooks (run inside the caller's transaction)
# =============================================================================

def open_assignment_for(machine: Machine) -> ServiceAssignment | None:
    if machine.current_assignment_id is None:
        return None
    assignment = db.session.get(ServiceAssignment, machine.current_assignment_id)
    if assignment is None or assignment.status == ASSIGNMENT_STATUS_COMPLETED:
        return None
    return assignment


def record_inspection(assignment: ServiceAssignment, findings: dict, actor: User) -> None:
    _log(assignment, "INSPECTED", actor, findings)


def write_off(assignment: ServiceAssignment, reason: str | None, actor: User) -> None:
    """
    Close an open assignment as a total loss: no parts are consumed and no
    debt is opened. A cost still awaiting the branch's answer blocks it.
    """
    if assignment.status == ASSIGNMENT_STATUS_PENDING_APPROVAL:
        raise ConflictError(
            "Cannot write off a machine while its repair cost awaits approval",
            details={"approval_request_id": assignment.approval_request_id},
        )
    _swap_status(assignment, assignment.status, {
        "status": ASSIGNMENT_STATUS_COMPLETED,
        "resolution": msm.RESOLUTION_SCRAPPED,
        "action_taken": reason,
        "completed_at": utcnow(),
    })
    _log(assignment, "TOTAL_LOSS", actor, {"reason": reason})


# =============================================================================
# Queries
# =============================================================================

def list_assignments(filters: dict, actor: User) -> list[ServiceAssignment]:
    """filters: status, technician_id, branch_id (center), origin_branch_id, serial_number."""
    query = branch_scope.apply_branch_filter(
        db.session.query(ServiceAssignment), actor,
        ServiceAssignment.branch_id, ServiceAssignment.origin_branch_id,
    )
    if filters.get("status"):
        query = query.filter(ServiceAssignment.status == filters["status"])
    if filters.get("technician_id") is not None:
        query = query.filter(ServiceAssignment.technician_id == filters["technician_id"])
    if filters.get("branch_id") is not None:
        query = query.filter(ServiceAssignment.branch_id == filters["branch_id"])
    if filters.get("origin_branch_id") is not None:
        query = query.filter(ServiceAssignment.origin_branch_id == filters["origin_branch_id"])
    if filters.get("serial_number"):
        query = query.filter(ServiceAssignment.serial_number == filters["serial_number"])
    return query.order_by(ServiceAssignment.assigned_at.desc(), ServiceAssignment.id.desc()).all()


def get_assignment(assignment_id: int, actor: User) -> ServiceAssignment:
    assignment = _get_assignment(assignment_id)
    if not (
        actor.id == assignment.technician_id
        or branch_scope.can_access_branch(actor, assignment.branch_id)
        or branch_scope.can_access_branch(actor, assignment.origin_branch_id)
    ):
        raise ForbiddenError("Not authorized for this service assignment")
    return assignment


def my_assignments(technician_id: int) -> list[ServiceAssignment]:
    """
    The technician's assignments that are not yet returned: still open, or
    completed while the machine still links to them (the link is cleared
    once the machine is back in stock).
    """
    technician_id = parse_int(technician_id, "technician_id", required=True)
    return (
        db.session.query(ServiceAssignment)
        .join(Machine, Machine.id == ServiceAssignment.machine_id)
        .filter(
            ServiceAssignment.technician_id == technician_id,
            db.or_(
                ServiceAssignment.status != ASSIGNMENT_STATUS_COMPLETED,
                Machine.current_assignment_id == ServiceAssignment.id,
            ),
        )
        .order_by(ServiceAssignment.assigned_at.desc(), ServiceAssignment.id.desc())
        .all()
    )
