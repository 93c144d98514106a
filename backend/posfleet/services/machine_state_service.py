# Overview: Machine lifecycle state machine; the only writer of Machine.status.

"""
Machine Lifecycle State Machine

Every status change of a machine goes through apply_transition():

1. Normalize the target (AWAITING_APPROVAL is accepted as PENDING_APPROVAL)
2. Verify the edge against LEGAL_TRANSITIONS (same-state requests are illegal)
3. Guards and side effects:
   - READY_FOR_RETURN requires a resolution (REPAIRED, SCRAPPED, REJECTED_REPAIR)
   - STANDBY / SOLD unlink the assignment and technician
   - RECEIVED_AT_CENTER records the origin branch
   - a machine linked to a service assignment may only enter the statuses
     permitted by that assignment's status (ASSIGNMENT_MACHINE_STATUSES)
4. Persist with compare-and-swap on the status that was read
5. Append a MachineMovementLog row

Nothing here commits; the caller's transaction owns the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import ConflictError, ForbiddenError, NotFoundError, TransitionError, ValidationError
from ..extensions import db
from ..models import Machine, MachineMovementLog, ServiceAssignment, User
from ..time_utils import utcnow
from . import branch_scope
from .concurrency import compare_and_swap, run_with_retry

NEW = "NEW"
STANDBY = "STANDBY"
IN_TRANSIT = "IN_TRANSIT"
RECEIVED_AT_CENTER = "RECEIVED_AT_CENTER"
ASSIGNED = "ASSIGNED"
UNDER_INSPECTION = "UNDER_INSPECTION"
PENDING_APPROVAL = "PENDING_APPROVAL"
IN_PROGRESS = "IN_PROGRESS"
REPAIR_APPROVED = "REPAIR_APPROVED"
REPAIR_REJECTED = "REPAIR_REJECTED"
READY_FOR_RETURN = "READY_FOR_RETURN"
RETURNING = "RETURNING"
SOLD = "SOLD"

STATUS_ALIASES = MappingProxyType({"AWAITING_APPROVAL": PENDING_APPROVAL})

LEGAL_TRANSITIONS: Mapping[str, frozenset] = MappingProxyType({
    NEW: frozenset({IN_TRANSIT, STANDBY, SOLD}),
    STANDBY: frozenset({IN_TRANSIT, SOLD}),
    IN_TRANSIT: frozenset({RECEIVED_AT_CENTER, NEW, STANDBY}),
    RECEIVED_AT_CENTER: frozenset({ASSIGNED, UNDER_INSPECTION}),
    ASSIGNED: frozenset({IN_PROGRESS, UNDER_INSPECTION}),
    UNDER_INSPECTION: frozenset({PENDING_APPROVAL, IN_PROGRESS, READY_FOR_RETURN, ASSIGNED}),
    IN_PROGRESS: frozenset({PENDING_APPROVAL, READY_FOR_RETURN}),
    PENDING_APPROVAL: frozenset({REPAIR_APPROVED, REPAIR_REJECTED}),
    REPAIR_APPROVED: frozenset({IN_PROGRESS, READY_FOR_RETURN}),
    REPAIR_REJECTED: frozenset({PENDING_APPROVAL, READY_FOR_RETURN}),
    READY_FOR_RETURN: frozenset({RETURNING}),
    RETURNING: frozenset({STANDBY, READY_FOR_RETURN}),
    SOLD: frozenset(),
})

MACHINE_STATUSES = frozenset(LEGAL_TRANSITIONS)

# Machine statuses allowed while linked to an assignment in the given status
ASSIGNMENT_MACHINE_STATUSES: Mapping[str, frozenset] = MappingProxyType({
    "ASSIGNED": frozenset({ASSIGNED, UNDER_INSPECTION}),
    "IN_PROGRESS": frozenset({IN_PROGRESS, UNDER_INSPECTION}),
    "PENDING_APPROVAL": frozenset({PENDING_APPROVAL}),
    "APPROVED": frozenset({REPAIR_APPROVED, IN_PROGRESS}),
    "REJECTED": frozenset({REPAIR_REJECTED}),
    "COMPLETED": frozenset({READY_FOR_RETURN, RETURNING, STANDBY}),
})

# Statuses shown on the maintenance-center board, in workflow order
CENTER_STATUSES = (
    RECEIVED_AT_CENTER,
    ASSIGNED,
    UNDER_INSPECTION,
    IN_PROGRESS,
    PENDING_APPROVAL,
    REPAIR_APPROVED,
    REPAIR_REJECTED,
    READY_FOR_RETURN,
)

RESOLUTION_SCRAPPED = "SCRAPPED"
RESOLUTIONS = frozenset({"REPAIRED", RESOLUTION_SCRAPPED, "REJECTED_REPAIR"})

# Entered only through the approval gateway, never by a manual transition
APPROVAL_STATUSES = frozenset({PENDING_APPROVAL, REPAIR_APPROVED, REPAIR_REJECTED})

# Payload keys copied onto the machine row when present
_LINK_FIELDS = ("branch_id", "current_assignment_id", "current_technician_id")


@dataclass(frozen=True)
class TransitionContext:
    actor_id: int | None = None
    actor_name: str | None = None
    notes: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    branch_id: int | None = None
    action: str = "STATUS_CHANGE"

    @classmethod
    def for_actor(cls, actor: User | None, **kwargs) -> "TransitionContext":
        return cls(
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            **kwargs,
        )


def normalize_status(status: str | None) -> str:
    if not status or not isinstance(status, str):
        raise ValidationError("Target status is required")
    normalized = status.strip().upper()
    normalized = STATUS_ALIASES.get(normalized, normalized)
    if normalized not in MACHINE_STATUSES:
        raise ValidationError(f"Unknown machine status: {status}")
    return normalized


def can_transition(from_status: str, to_status: str) -> bool:
    from_status = STATUS_ALIASES.get(from_status, from_status)
    to_status = STATUS_ALIASES.get(to_status, to_status)
    return to_status in LEGAL_TRANSITIONS.get(from_status, frozenset())


def _check_assignment_link(current: str, target: str, assignment_id: int | None) -> None:
    if assignment_id is None:
        return
    assignment = db.session.get(ServiceAssignment, assignment_id)
    if assignment is None:
        return
    permitted = ASSIGNMENT_MACHINE_STATUSES.get(assignment.status, frozenset())
    if target not in permitted:
        raise TransitionError(
            current,
            target,
            f"Machine cannot move to {target} while its service assignment is {assignment.status}",
        )


def apply_transition(machine: Machine, target_status: str, context: TransitionContext) -> Machine:
    """
    Move `machine` to `target_status` inside the caller's transaction.

    Raises:
        TransitionError: edge not in the legal graph, or not permitted by the
            linked service assignment
        ValidationError: missing/invalid resolution for READY_FOR_RETURN
        ConflictError: the status changed under us (lost compare-and-swap)
    """
    target = normalize_status(target_status)
    current = machine.status
    if not can_transition(current, target):
        raise TransitionError(current, target)

    payload = context.payload or {}
    values: dict[str, Any] = {"status": target, "updated_at": utcnow()}
    for key in _LINK_FIELDS:
        if key in payload:
            values[key] = payload[key]

    if target == READY_FOR_RETURN:
        resolution = str(payload.get("resolution") or "").strip().upper()
        if resolution not in RESOLUTIONS:
            raise ValidationError(
                f"resolution must be one of: {', '.join(sorted(RESOLUTIONS))}",
                details={"field": "resolution"},
            )
        values["resolution"] = resolution

    if target == RECEIVED_AT_CENTER and payload.get("origin_branch_id") is not None:
        values["origin_branch_id"] = payload["origin_branch_id"]

    linked_assignment_id = values.get("current_assignment_id", machine.current_assignment_id)
    _check_assignment_link(current, target, linked_assignment_id)

    if target in (STANDBY, SOLD):
        values["current_assignment_id"] = None
        values["current_technician_id"] = None

    if context.notes:
        values["notes"] = context.notes

    if not compare_and_swap(Machine, machine.id, expected={"status": current}, values=values):
        raise ConflictError(
            f"Machine {machine.serial_number} changed status concurrently",
            details={"expected": current},
        )

    details = {key: value for key, value in payload.items() if value is not None}
    if context.notes:
        details["notes"] = context.notes
    db.session.add(MachineMovementLog(
        machine_id=machine.id,
        serial_number=machine.serial_number,
        action=context.action,
        from_status=current,
        to_status=target,
        details=details or None,
        performed_by=context.actor_name,
        performed_by_id=context.actor_id,
        branch_id=context.branch_id if context.branch_id is not None else machine.branch_id,
        occurred_at=utcnow(),
    ))
    return machine


def get_machine(machine_id: int) -> Machine:
    machine = db.session.get(Machine, machine_id)
    if machine is None:
        raise NotFoundError("Machine not found")
    return machine


def _require_machine_access(actor: User, machine: Machine) -> None:
    if not (
        branch_scope.can_access_branch(actor, machine.branch_id)
        or branch_scope.can_access_branch(actor, machine.origin_branch_id)
    ):
        raise ForbiddenError("Not authorized for this machine")


def transition(machine_id: int, target_status: str, context: TransitionContext, actor: User | None = None) -> Machine:
    """
    Load the machine and apply one manual transition. Caller commits.

    Approval statuses are refused here: only the approval gateway may move a
    machine into or out of PENDING_APPROVAL.
    """
    target = normalize_status(target_status)

    def _op() -> Machine:
        machine = get_machine(machine_id)
        if actor is not None and not branch_scope.can_access_branch(actor, machine.branch_id):
            raise ForbiddenError("Not authorized for this machine")
        if target in APPROVAL_STATUSES or machine.status == PENDING_APPROVAL:
            raise TransitionError(
                machine.status,
                target,
                f"{target} is decided through a maintenance approval request",
            )
        return apply_transition(machine, target, context)

    return run_with_retry(_op)


def history(machine_id: int, actor: User) -> list[MachineMovementLog]:
    machine = get_machine(machine_id)
    _require_machine_access(actor, machine)
    return (
        db.session.query(MachineMovementLog)
        .filter(MachineMovementLog.machine_id == machine.id)
        .order_by(MachineMovementLog.id.asc())
        .all()
    )


def kanban(branch_ids: set[int] | None) -> dict:
    """
    Machines in maintenance-center statuses grouped by status.

    branch_ids None means every branch.
    """
    query = db.session.query(Machine).filter(Machine.status.in_(CENTER_STATUSES))
    if branch_ids is not None:
        if not branch_ids:
            query = query.filter(db.false())
        else:
            query = query.filter(Machine.branch_id.in_(branch_ids))

    columns: dict[str, list[dict]] = {status: [] for status in CENTER_STATUSES}
    for machine in query.order_by(Machine.updated_at.asc(), Machine.id.asc()).all():
        columns[machine.status].append(machine.to_dict())

    return {
        "columns": columns,
        "counts": {status: len(machines) for status, machines in columns.items()},
        "total": sum(len(machines) for machines in columns.values()),
    }
