# Overview: Maintenance-center desk operations: inspection, write-off and return shipping.

"""
Maintenance Center Desk

Thin operations over the machine state machine and transfer orders:

- inspect_machine: record the problem and an estimate; the machine moves to
  UNDER_INSPECTION (already inspected machines only get their findings updated)
- declare_total_loss: the machine cannot be repaired; its open assignment is
  closed without parts or debt and the machine waits for return as SCRAPPED
- ready_for_return: machines at a center waiting to go back to their branch
- create_return_package: one MACHINE transfer order per origin branch for a
  batch of ready machines, all in one transaction
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, TransitionError, ValidationError
from ..extensions import db
from ..models import Branch, Machine, ServiceAssignment, TransferOrder, User
from ..money import to_cents
from ..validation import clean_str, parse_int
from . import assignment_service, audit_service, branch_scope, inventory_service, machine_state_service as msm
from . import transfer_service
from .concurrency import run_with_retry
from .notification_service import MACHINE_SCRAPPED, queue_notification

INSPECTABLE_FROM = frozenset({msm.RECEIVED_AT_CENTER, msm.ASSIGNED, msm.UNDER_INSPECTION})

# Statuses a machine may be written off from; the first two step through inspection
TOTAL_LOSS_FROM = frozenset({
    msm.RECEIVED_AT_CENTER,
    msm.ASSIGNED,
    msm.UNDER_INSPECTION,
    msm.IN_PROGRESS,
    msm.REPAIR_APPROVED,
    msm.REPAIR_REJECTED,
})

MAX_PACKAGE_MACHINES = 200


def _center_machine(machine_id: int, actor: User) -> Machine:
    machine = msm.get_machine(machine_id)
    center = db.session.get(Branch, machine.branch_id)
    if center is None or not center.is_maintenance_center:
        raise ValidationError("Machine is not at a maintenance center")
    branch_scope.require_branch_access(actor, center.id, "Not authorized for this maintenance center")
    return machine


def _estimate(data: dict) -> tuple[list[dict], int | None]:
    parts, parts_total = inventory_service.price_parts(data.get("required_parts"))
    if data.get("estimated_cost") is not None:
        estimate = to_cents(data["estimated_cost"], field="estimated_cost")
    elif data.get("estimated_cost_cents") is not None:
        estimate = parse_int(data["estimated_cost_cents"], "estimated_cost_cents", minimum=0)
    elif parts:
        estimate = parts_total
    else:
        estimate = None
    if estimate is not None and estimate < 0:
        raise ValidationError("estimated_cost must not be negative")
    return parts, estimate


def inspect_machine(machine_id: int, data: dict, actor: User) -> Machine:
    """
    Record inspection findings and move the machine to UNDER_INSPECTION.

    Args:
        data: {problem_description, estimated_cost? (major units) |
            estimated_cost_cents?, required_parts?: [{part_id?, name?,
            quantity, unit_cost?}]}. Without an explicit estimate the priced
            parts total is used.

    Raises:
        ValidationError: missing description, bad estimate, machine not at a center
        TransitionError: machine status cannot be inspected
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    description = clean_str(data.get("problem_description"), "problem_description", required=True)
    parts, estimate = _estimate(data)

    def _op() -> Machine:
        machine = _center_machine(machine_id, actor)
        if machine.status not in INSPECTABLE_FROM:
            raise TransitionError(machine.status, msm.UNDER_INSPECTION)

        findings = {
            "problem_description": description,
            "estimated_cost_cents": estimate,
            "required_parts": parts or None,
        }
        if machine.status != msm.UNDER_INSPECTION:
            msm.apply_transition(
                machine,
                msm.UNDER_INSPECTION,
                msm.TransitionContext.for_actor(actor, action="INSPECTED", payload=findings),
            )
        machine.problem_description = description
        machine.estimated_cost_cents = estimate

        assignment = assignment_service.open_assignment_for(machine)
        if assignment is not None:
            assignment_service.record_inspection(assignment, findings, actor)
        audit_service.log_action(
            "MACHINE", machine.id, "INSPECTED",
            {"serial_number": machine.serial_number, "estimated_cost_cents": estimate, "parts": len(parts)},
            actor=actor, branch_id=machine.branch_id,
        )
        db.session.flush()
        return machine

    return run_with_retry(_op)


def declare_total_loss(machine_id: int, reason: str | None, actor: User) -> Machine:
    """
    Write the machine off as irreparable: resolution SCRAPPED, READY_FOR_RETURN.

    Any open assignment is completed with no parts consumed and no debt.

    Raises:
        ConflictError: the repair cost is still awaiting the branch's answer
        TransitionError: machine is not in a repair status
    """
    reason = clean_str(reason, "reason")

    def _op() -> Machine:
        machine = _center_machine(machine_id, actor)
        if machine.status == msm.PENDING_APPROVAL:
            raise ConflictError(
                f"Machine {machine.serial_number} is awaiting a repair approval decision",
                details={"status": machine.status},
            )
        if machine.status not in TOTAL_LOSS_FROM:
            raise TransitionError(machine.status, msm.READY_FOR_RETURN, "Machine is not in a repair status")

        if machine.status in (msm.RECEIVED_AT_CENTER, msm.ASSIGNED):
            msm.apply_transition(
                machine, msm.UNDER_INSPECTION,
                msm.TransitionContext.for_actor(actor, action="TOTAL_LOSS_INSPECTION"),
            )

        assignment = assignment_service.open_assignment_for(machine)
        if assignment is not None:
            assignment_service.write_off(assignment, reason, actor)

        msm.apply_transition(
            machine,
            msm.READY_FOR_RETURN,
            msm.TransitionContext.for_actor(
                actor, action="TOTAL_LOSS", notes=reason,
                payload={"resolution": msm.RESOLUTION_SCRAPPED},
            ),
        )
        audit_service.log_action(
            "MACHINE", machine.id, "TOTAL_LOSS",
            {"serial_number": machine.serial_number, "reason": reason,
             "assignment_id": assignment.id if assignment else None},
            actor=actor, branch_id=machine.branch_id,
        )
        if machine.origin_branch_id is not None:
            queue_notification(
                type=MACHINE_SCRAPPED,
                branch_id=machine.origin_branch_id,
                title=f"Machine {machine.serial_number} declared a total loss",
                message=reason,
                link=f"/machines/{machine.id}",
                data={"machine_id": machine.id},
            )
        return machine

    return run_with_retry(_op)


def _resolve_center(center_branch_id: int | None, actor: User) -> Branch:
    center_branch_id = center_branch_id if center_branch_id is not None else actor.branch_id
    if center_branch_id is None:
        raise ValidationError("center_branch_id is required")
    center = db.session.get(Branch, center_branch_id)
    if center is None or not center.is_maintenance_center:
        raise ValidationError(f"Branch {center_branch_id} is not a maintenance center")
    branch_scope.require_branch_access(actor, center.id, "Not authorized for this maintenance center")
    return center


def ready_for_return(center_branch_id: int | None, actor: User) -> list[dict]:
    """Machines at the center that are READY_FOR_RETURN to a known origin branch."""
    center = _resolve_center(center_branch_id, actor)
    machines = (
        db.session.query(Machine)
        .filter(
            Machine.branch_id == center.id,
            Machine.status == msm.READY_FOR_RETURN,
            Machine.origin_branch_id.isnot(None),
        )
        .order_by(Machine.origin_branch_id.asc(), Machine.updated_at.asc(), Machine.id.asc())
        .all()
    )

    assignment_ids = [m.current_assignment_id for m in machines if m.current_assignment_id is not None]
    assignments = {}
    if assignment_ids:
        assignments = {
            a.id: a
            for a in db.session.query(ServiceAssignment).filter(ServiceAssignment.id.in_(assignment_ids)).all()
        }

    rows = []
    for machine in machines:
        row = machine.to_dict()
        assignment = assignments.get(machine.current_assignment_id)
        row["origin_branch_name"] = machine.origin_branch.name if machine.origin_branch else None
        row["technician_name"] = assignment.technician_name if assignment else None
        row["total_cost_cents"] = assignment.total_cost_cents if assignment else 0
        row["action_taken"] = assignment.action_taken if assignment else None
        rows.append(row)
    return rows


def create_return_package(data: dict, actor: User) -> list[TransferOrder]:
    """
    Ship a batch of ready machines home: one transfer order per origin branch.

    Args:
        data: {machine_ids: [int], notes?, center_branch_id?}

    Raises:
        ValidationError: empty or duplicate ids, machines not ready at the center
        ConflictError: a machine is locked by another pending order
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    raw_ids = data.get("machine_ids")
    if not isinstance(raw_ids, list) or not raw_ids:
        raise ValidationError("At least one machine is required")
    if len(raw_ids) > MAX_PACKAGE_MACHINES:
        raise ValidationError(f"A return package holds at most {MAX_PACKAGE_MACHINES} machines")
    machine_ids = [parse_int(raw, "machine_ids", required=True) for raw in raw_ids]
    duplicates = sorted({i for i in machine_ids if machine_ids.count(i) > 1})
    if duplicates:
        raise ValidationError("Duplicate machines in return package", details={"machine_ids": duplicates})
    notes = clean_str(data.get("notes"), "notes")
    center_branch_id = parse_int(data.get("center_branch_id"), "center_branch_id")

    def _op() -> list[TransferOrder]:
        center = _resolve_center(center_branch_id, actor)
        machines = db.session.query(Machine).filter(Machine.id.in_(machine_ids)).all()
        by_id = {m.id: m for m in machines}

        missing = [i for i in machine_ids if i not in by_id]
        if missing:
            raise ValidationError("Machines not found", details={"machine_ids": missing})
        elsewhere = [by_id[i].serial_number for i in machine_ids if by_id[i].branch_id != center.id]
        if elsewhere:
            raise ValidationError("Machines are not at this maintenance center", details={"serials": elsewhere})
        not_ready = {
            by_id[i].serial_number: by_id[i].status for i in machine_ids if by_id[i].status != msm.READY_FOR_RETURN
        }
        if not_ready:
            raise ValidationError("Machines are not ready for return", details={"statuses": not_ready})
        homeless = [by_id[i].serial_number for i in machine_ids if by_id[i].origin_branch_id is None]
        if homeless:
            raise ValidationError("Machines have no origin branch", details={"serials": homeless})

        groups: dict[int, list[str]] = {}
        for machine_id in machine_ids:
            machine = by_id[machine_id]
            groups.setdefault(machine.origin_branch_id, []).append(machine.serial_number)

        orders = [
            transfer_service.open_order(
                transfer_service.ORDER_TYPE_MACHINE, center.id, origin_branch_id, serials, notes, actor
            )
            for origin_branch_id, serials in groups.items()
        ]
        audit_service.log_action(
            "BRANCH", center.id, "RETURN_PACKAGE_CREATED",
            {"orders": [o.order_number for o in orders], "machines": len(machine_ids)},
            actor=actor, branch_id=center.id,
        )
        current_app.logger.info(
            "Return package from %s: %d machine(s) in %d order(s)", center.code, len(machine_ids), len(orders)
        )
        return orders

    return run_with_retry(_op)
