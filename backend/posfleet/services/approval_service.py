# Overview: Repair cost approval requests answered by the machine's origin branch.

"""
Approval Gateway

Two request variants share one table:
- per-assignment (request_key "ASSIGNMENT:<id>"): the response drives the
  assignment (APPROVED / REJECTED) and the machine (REPAIR_APPROVED /
  REPAIR_REJECTED); an approved cost later becomes a branch debt when the
  assignment completes.
- batch (request_key "BATCH:<serial>"): raised for a machine outside any
  assignment; the response only moves the machine and never opens a debt.

A request is answered exactly once: the PENDING -> decision update is a
compare-and-swap and a second response fails with ConflictError.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ApprovalRequest, Branch, Machine, MachineMovementLog, ServiceAssignment, ServiceAssignmentLog, User
from ..money import format_cents, to_cents
from ..time_utils import utcnow
from ..validation import clean_str, parse_choice, parse_int
from . import audit_service, branch_scope, inventory_service, machine_state_service as msm
from .concurrency import compare_and_swap, run_with_retry
from .notification_service import APPROVAL_REQUESTED, APPROVAL_RESPONDED, queue_notification

REQUEST_STATUS_PENDING = "PENDING"
REQUEST_STATUS_APPROVED = "APPROVED"
REQUEST_STATUS_REJECTED = "REJECTED"
DECISIONS = (REQUEST_STATUS_APPROVED, REQUEST_STATUS_REJECTED)

VARIANT_ASSIGNMENT = "ASSIGNMENT"
VARIANT_BATCH = "BATCH"


def assignment_key(assignment_id: int) -> str:
    return f"{VARIANT_ASSIGNMENT}:{assignment_id}"


def batch_key(serial_number: str) -> str:
    return f"{VARIANT_BATCH}:{serial_number}"


def _has_pending(request_key: str) -> bool:
    return db.session.query(ApprovalRequest.id).filter(
        ApprovalRequest.request_key == request_key,
        ApprovalRequest.status == REQUEST_STATUS_PENDING,
    ).first() is not None


def create_request(
    *,
    serial_number: str,
    center_branch_id: int,
    target_branch_id: int,
    proposed_parts: list | None,
    proposed_cost_cents: int,
    actor: User,
    notes: str | None = None,
    assignment: ServiceAssignment | None = None,
    machine_id: int | None = None,
) -> ApprovalRequest:
    """
    Open a PENDING approval request inside the caller's transaction.

    Raises ConflictError while another PENDING request exists for the same
    key (assignment or serial).
    """
    if target_branch_id is None:
        raise ValidationError("Machine has no origin branch to ask for approval")
    request_key = assignment_key(assignment.id) if assignment is not None else batch_key(serial_number)
    if _has_pending(request_key):
        raise ConflictError("An approval request is already pending", details={"request_key": request_key})

    request = ApprovalRequest(
        assignment_id=assignment.id if assignment is not None else None,
        machine_id=machine_id,
        serial_number=serial_number,
        request_key=request_key,
        center_branch_id=center_branch_id,
        target_branch_id=target_branch_id,
        proposed_parts=proposed_parts,
        proposed_cost_cents=proposed_cost_cents,
        notes=notes,
        status=REQUEST_STATUS_PENDING,
        requested_by_user_id=actor.id,
        requested_by_name=actor.name,
        created_at=utcnow(),
    )
    db.session.add(request)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError("An approval request is already pending", details={"request_key": request_key}) from exc

    queue_notification(
        type=APPROVAL_REQUESTED,
        branch_id=target_branch_id,
        title=f"Repair approval needed for {serial_number}",
        message=f"Proposed cost {format_cents(proposed_cost_cents)}",
        link=f"/maintenance-approvals/{request.id}",
        data={"request_id": request.id, "proposed_cost_cents": proposed_cost_cents},
    )
    return request


def create_batch_request(data: dict, actor: User) -> ApprovalRequest:
    """
    Batch variant: ask the owning branch to approve a repair cost for a
    machine held by the actor's center without a service assignment.

    data: {machine_id | serial_number, cost?, parts?, notes?, target_branch_id?}
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    machine_id = parse_int(data.get("machine_id"), "machine_id")
    serial = clean_str(data.get("serial_number"), "serial_number")
    if machine_id is None and not serial:
        raise ValidationError("machine_id or serial_number is required")
    notes = clean_str(data.get("notes"), "notes")

    def _op() -> ApprovalRequest:
        if machine_id is not None:
            machine = db.session.get(Machine, machine_id)
        else:
            machine = db.session.query(Machine).filter_by(serial_number=serial).first()
        if machine is None:
            raise NotFoundError(f"Machine {machine_id or serial} not found")
        if serial and machine.serial_number != serial:
            raise ValidationError("machine_id and serial_number refer to different machines")
        branch_scope.require_branch_access(actor, machine.branch_id, "Machine is not held by your branch")
        if machine.current_assignment_id is not None and _assignment_open(machine.current_assignment_id):
            raise ConflictError(
                f"Machine {machine.serial_number} has an open service assignment; request approval through it",
                details={"assignment_id": machine.current_assignment_id},
            )

        parts, parts_total = inventory_service.price_parts(data.get("parts"))
        if data.get("cost") is not None:
            cost_cents = to_cents(data["cost"], field="cost")
        else:
            cost_cents = parts_total
        if cost_cents <= 0:
            raise ValidationError("Proposed cost must be greater than zero")

        target_branch_id = parse_int(data.get("target_branch_id"), "target_branch_id") or machine.origin_branch_id
        if target_branch_id is None or db.session.get(Branch, target_branch_id) is None:
            raise ValidationError("Target branch is required")

        request = create_request(
            serial_number=machine.serial_number,
            center_branch_id=machine.branch_id,
            target_branch_id=target_branch_id,
            proposed_parts=parts,
            proposed_cost_cents=cost_cents,
            actor=actor,
            notes=notes,
            machine_id=machine.id,
        )
        if msm.can_transition(machine.status, msm.PENDING_APPROVAL):
            msm.apply_transition(
                machine,
                msm.PENDING_APPROVAL,
                msm.TransitionContext.for_actor(
                    actor, action="APPROVAL_REQUESTED", payload={"approval_request_id": request.id}
                ),
            )
        audit_service.log_action(
            "APPROVAL_REQUEST", request.id, "CREATED",
            {"variant": VARIANT_BATCH, "serial_number": machine.serial_number, "proposed_cost_cents": cost_cents},
            actor=actor, branch_id=machine.branch_id,
        )
        return request

    return run_with_retry(_op)


def _assignment_open(assignment_id: int) -> bool:
    assignment = db.session.get(ServiceAssignment, assignment_id)
    return assignment is not None and assignment.status != "COMPLETED"


def _get_request(request_id: int) -> ApprovalRequest:
    request = db.session.get(ApprovalRequest, request_id)
    if request is None:
        raise NotFoundError("Approval request not found")
    return request


def _apply_to_assignment(request: ApprovalRequest, decision: str, reason: str | None, actor: User) -> None:
    assignment = db.session.get(ServiceAssignment, request.assignment_id)
    if assignment is None:
        raise ConflictError(f"Assignment {request.assignment_id} no longer exists")

    if not compare_and_swap(
        ServiceAssignment, assignment.id,
        expected={"status": "PENDING_APPROVAL"},
        values={
            "status": decision,
            "approval_status": decision,
            "rejection_reason": reason if decision == REQUEST_STATUS_REJECTED else None,
        },
    ):
        raise ConflictError(
            f"Assignment {assignment.id} is no longer awaiting approval",
            details={"status": assignment.status},
        )

    target = msm.REPAIR_APPROVED if decision == REQUEST_STATUS_APPROVED else msm.REPAIR_REJECTED
    msm.apply_transition(
        assignment.machine,
        target,
        msm.TransitionContext.for_actor(
            actor,
            action="APPROVAL_RESPONSE",
            notes=reason,
            payload={"approval_request_id": request.id},
        ),
    )
    db.session.add(ServiceAssignmentLog(
        assignment_id=assignment.id,
        action=f"APPROVAL_{decision}",
        details={"request_id": request.id, "reason": reason, "cost_cents": request.proposed_cost_cents},
        performed_by=actor.name,
        performed_by_id=actor.id,
        performed_at=utcnow(),
    ))


def _entered_approval(machine: Machine, request: ApprovalRequest) -> bool:
    """True when creating `request` moved the machine to PENDING_APPROVAL."""
    logs = (
        db.session.query(MachineMovementLog)
        .filter(
            MachineMovementLog.machine_id == machine.id,
            MachineMovementLog.action == "APPROVAL_REQUESTED",
            MachineMovementLog.to_status == msm.PENDING_APPROVAL,
        )
        .all()
    )
    return any((log.details or {}).get("approval_request_id") == request.id for log in logs)


def _apply_to_batch_machine(request: ApprovalRequest, decision: str, reason: str | None, actor: User) -> bool:
    """
    Move the machine to the decided status.

    Returns False when the request never put the machine in PENDING_APPROVAL
    (it was raised from a status with no approval edge). A machine that did
    enter PENDING_APPROVAL for this request and has since left it is a conflict.
    """
    machine = db.session.query(Machine).filter_by(serial_number=request.serial_number).first()
    if machine is None:
        raise ConflictError(f"Machine {request.serial_number} no longer exists")
    if machine.status != msm.PENDING_APPROVAL:
        if _entered_approval(machine, request):
            raise ConflictError(
                f"Machine {machine.serial_number} is no longer awaiting approval",
                details={"status": machine.status},
            )
        return False

    target = msm.REPAIR_APPROVED if decision == REQUEST_STATUS_APPROVED else msm.REPAIR_REJECTED
    msm.apply_transition(
        machine,
        target,
        msm.TransitionContext.for_actor(
            actor,
            action="APPROVAL_RESPONSE",
            notes=reason,
            payload={"approval_request_id": request.id},
        ),
    )
    return True


def respond(request_id: int, decision: str, actor: User, reason: str | None = None) -> ApprovalRequest:
    """
    Approve or reject a PENDING request on behalf of its target branch.

    Raises:
        ValidationError: unknown decision, or rejection without a reason
        NotFoundError, ForbiddenError
        ConflictError: the request was already answered
    """
    decision = parse_choice(decision, "decision", DECISIONS)
    reason = clean_str(reason, "reason")
    if decision == REQUEST_STATUS_REJECTED and not reason:
        raise ValidationError("Rejection reason is required")

    def _op() -> ApprovalRequest:
        request = _get_request(request_id)
        branch_scope.require_branch_access(
            actor, request.target_branch_id, "Only the machine's branch can answer this request"
        )

        if not compare_and_swap(
            ApprovalRequest, request.id,
            expected={"status": REQUEST_STATUS_PENDING},
            values={
                "status": decision,
                "responder_id": actor.id,
                "responder_name": actor.name,
                "responded_at": utcnow(),
                "rejection_reason": reason if decision == REQUEST_STATUS_REJECTED else None,
            },
        ):
            raise ConflictError(
                "Approval request was already answered",
                details={"status": request.status},
            )

        if request.is_batch:
            moved = _apply_to_batch_machine(request, decision, reason, actor)
            audit_service.log_action(
                "APPROVAL_REQUEST", request.id, decision,
                {"variant": VARIANT_BATCH, "serial_number": request.serial_number,
                 "reason": reason, "machine_transitioned": moved},
                actor=actor, branch_id=request.target_branch_id,
            )
        else:
            _apply_to_assignment(request, decision, reason, actor)

        queue_notification(
            type=APPROVAL_RESPONDED,
            branch_id=request.center_branch_id,
            title=f"Repair of {request.serial_number} {decision.lower()}",
            message=reason,
            link=f"/maintenance-approvals/{request.id}",
            data={"request_id": request.id, "decision": decision},
        )
        return request

    return run_with_retry(_op)


def list_requests(filters: dict, actor: User) -> list[ApprovalRequest]:
    """filters: status, branch_id (target), center_branch_id, variant, serial_number."""
    query = branch_scope.apply_branch_filter(
        db.session.query(ApprovalRequest), actor,
        ApprovalRequest.target_branch_id, ApprovalRequest.center_branch_id,
    )
    if filters.get("status"):
        query = query.filter(ApprovalRequest.status == filters["status"])
    if filters.get("branch_id") is not None:
        query = query.filter(ApprovalRequest.target_branch_id == filters["branch_id"])
    if filters.get("center_branch_id") is not None:
        query = query.filter(ApprovalRequest.center_branch_id == filters["center_branch_id"])
    if filters.get("variant") == VARIANT_BATCH:
        query = query.filter(ApprovalRequest.assignment_id.is_(None))
    elif filters.get("variant") == VARIANT_ASSIGNMENT:
        query = query.filter(ApprovalRequest.assignment_id.isnot(None))
    if filters.get("serial_number"):
        query = query.filter(ApprovalRequest.serial_number == filters["serial_number"])
    return query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).all()


def get_request(request_id: int, actor: User) -> ApprovalRequest:
    request = _get_request(request_id)
    if not (
        branch_scope.can_access_branch(actor, request.target_branch_id)
        or branch_scope.can_access_branch(actor, request.center_branch_id)
    ):
        raise ForbiddenError("Not authorized for this approval request")
    return request


def pending_count(branch_id: int | None, actor: User) -> int:
    """PENDING requests waiting for the branch's answer."""
    branch_id = branch_scope.resolve_branch_filter(actor, branch_id)
    query = db.session.query(func.count(ApprovalRequest.id)).filter(
        ApprovalRequest.status == REQUEST_STATUS_PENDING
    )
    if branch_id is not None:
        query = query.filter(ApprovalRequest.target_branch_id == branch_id)
    elif not branch_scope.is_global(actor):
        return 0
    return int(query.scalar() or 0)
