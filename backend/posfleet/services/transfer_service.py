# Overview: Inter-branch transfer orders for machines, SIM cards and spare parts.

"""
Transfer Order Manager

LIFECYCLE:
1. PENDING: created by the source branch. Machines move to IN_TRANSIT (or
   READY_FOR_RETURN -> RETURNING), SIMs to IN_TRANSIT; spare parts are only
   reserved. Every unit is locked: no other PENDING order of the same type
   may reference it while its item is unresolved.
2. COMPLETED: the destination resolved every item (accept or reject).
3. REJECTED: the destination refused the whole order; units restored.
4. CANCELLED: the source withdrew the order; units restored.

Items snapshot the unit by value (serial, model, part name, unit cost) and
remember the unit's status at creation so it can be restored exactly.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, Machine, SimCard, SparePart, TransferOrder, TransferOrderItem, User
from ..time_utils import utcnow
from ..validation import clean_str, parse_bool, parse_choice, parse_int
from . import audit_service, branch_scope, inventory_service, machine_state_service as msm
from .concurrency import compare_and_swap, run_with_retry
from .document_service import next_document_number
from .notification_service import (
    TRANSFER_CANCELLED,
    TRANSFER_CREATED,
    TRANSFER_RECEIVED,
    TRANSFER_REJECTED,
    queue_notification,
)

# Order types
ORDER_TYPE_MACHINE = "MACHINE"
ORDER_TYPE_SIM = "SIM"
ORDER_TYPE_SPARE_PART = "SPARE_PART"
ORDER_TYPES = (ORDER_TYPE_MACHINE, ORDER_TYPE_SIM, ORDER_TYPE_SPARE_PART)

# Order status constants
ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_REJECTED = "REJECTED"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_REJECTED, ORDER_STATUS_CANCELLED)

# Item status constants
ITEM_STATUS_PENDING = "PENDING"
ITEM_STATUS_ACCEPTED = "ACCEPTED"
ITEM_STATUS_REJECTED = "REJECTED"

SIM_STATUS_ACTIVE = "ACTIVE"
SIM_STATUS_IN_TRANSIT = "IN_TRANSIT"

TRANSFERABLE_MACHINE_STATUSES = frozenset({msm.NEW, msm.STANDBY, msm.READY_FOR_RETURN})

ORDER_NUMBER_PREFIX = "TO"


# =============================================================================
# Lookups
# =============================================================================

def _get_active_branch(branch_id: int | None, label: str) -> Branch:
    if branch_id is None:
        raise ValidationError(f"{label} is required")
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise ValidationError(f"{label} {branch_id} not found")
    if not branch.is_active:
        raise ValidationError(f"{label} {branch_id} is not active")
    return branch


def _get_order(order_id: int) -> TransferOrder:
    order = db.session.get(TransferOrder, order_id)
    if order is None:
        raise NotFoundError("Transfer order not found")
    return order


def _require_pending(order: TransferOrder) -> None:
    if order.status != ORDER_STATUS_PENDING:
        raise ConflictError(
            f"Transfer order {order.order_number} is {order.status}, not PENDING",
            details={"status": order.status},
        )


def _locked_serials(order_type: str, serials: list[str]) -> dict[str, str]:
    """Serials referenced by unresolved items of PENDING orders, mapped to the order number."""
    if not serials:
        return {}
    rows = (
        db.session.query(TransferOrderItem.serial_number, TransferOrder.order_number)
        .join(TransferOrder, TransferOrder.id == TransferOrderItem.order_id)
        .filter(
            TransferOrder.order_type == order_type,
            TransferOrder.status == ORDER_STATUS_PENDING,
            TransferOrderItem.item_status == ITEM_STATUS_PENDING,
            TransferOrderItem.serial_number.in_(serials),
        )
        .all()
    )
    return {serial: order_number for serial, order_number in rows}


def _normalize_serials(items: list) -> list[str]:
    serials = []
    for item in items:
        raw = item.get("serial_number") if isinstance(item, dict) else item
        serial = clean_str(raw, "serial_number")
        if not serial:
            raise ValidationError("Every item needs a serial_number")
        serials.append(serial)

    duplicates = sorted({s for s in serials if serials.count(s) > 1})
    if duplicates:
        raise ValidationError("Duplicate serial numbers in order", details={"serials": duplicates})
    return serials


def _check_not_locked(order_type: str, serials: list[str]) -> None:
    locked = _locked_serials(order_type, serials)
    if locked:
        raise ConflictError(
            "Items are already part of a pending transfer order",
            details={"locked": locked},
        )


# =============================================================================
# Create
# =============================================================================

def _add_machine_items(order: TransferOrder, items: list, actor: User) -> None:
    serials = _normalize_serials(items)
    machines = db.session.query(Machine).filter(Machine.serial_number.in_(serials)).all()
    by_serial = {m.serial_number: m for m in machines}

    missing = [s for s in serials if s not in by_serial]
    if missing:
        raise ValidationError("Machines not found", details={"serials": missing})
    elsewhere = [s for s in serials if by_serial[s].branch_id != order.from_branch_id]
    if elsewhere:
        raise ValidationError("Machines are not in the source branch", details={"serials": elsewhere})
    _check_not_locked(ORDER_TYPE_MACHINE, serials)
    unavailable = {
        s: by_serial[s].status for s in serials if by_serial[s].status not in TRANSFERABLE_MACHINE_STATUSES
    }
    if unavailable:
        raise ValidationError("Machines are not available for transfer", details={"statuses": unavailable})

    for serial in serials:
        machine = by_serial[serial]
        previous = machine.status
        target = msm.RETURNING if previous == msm.READY_FOR_RETURN else msm.IN_TRANSIT
        msm.apply_transition(
            machine,
            target,
            msm.TransitionContext.for_actor(
                actor,
                action="TRANSFER_OUT",
                payload={"order_number": order.order_number, "to_branch_id": order.to_branch_id},
                branch_id=order.from_branch_id,
            ),
        )
        order.items.append(TransferOrderItem(
            serial_number=machine.serial_number,
            model=machine.model,
            manufacturer=machine.manufacturer,
            quantity=1,
            previous_status=previous,
            item_status=ITEM_STATUS_PENDING,
        ))


def _add_sim_items(order: TransferOrder, items: list) -> None:
    serials = _normalize_serials(items)
    sims = db.session.query(SimCard).filter(SimCard.serial_number.in_(serials)).all()
    by_serial = {s.serial_number: s for s in sims}

    missing = [s for s in serials if s not in by_serial]
    if missing:
        raise ValidationError("SIM cards not found", details={"serials": missing})
    elsewhere = [s for s in serials if by_serial[s].branch_id != order.from_branch_id]
    if elsewhere:
        raise ValidationError("SIM cards are not in the source branch", details={"serials": elsewhere})
    _check_not_locked(ORDER_TYPE_SIM, serials)
    unavailable = {s: by_serial[s].status for s in serials if by_serial[s].status != SIM_STATUS_ACTIVE}
    if unavailable:
        raise ValidationError("SIM cards are not available for transfer", details={"statuses": unavailable})

    for serial in serials:
        sim = by_serial[serial]
        if not compare_and_swap(
            SimCard, sim.id,
            expected={"status": SIM_STATUS_ACTIVE},
            values={"status": SIM_STATUS_IN_TRANSIT},
        ):
            raise ConflictError(f"SIM card {serial} changed concurrently")
        order.items.append(TransferOrderItem(
            serial_number=sim.serial_number,
            model=sim.sim_type,
            quantity=1,
            previous_status=SIM_STATUS_ACTIVE,
            item_status=ITEM_STATUS_PENDING,
        ))


def _add_part_items(order: TransferOrder, items: list) -> None:
    requested: dict[int, int] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Spare part items must be objects with part_id and quantity")
        part_id = parse_int(item.get("part_id"), "part_id", required=True)
        quantity = parse_int(item.get("quantity"), "quantity", required=True)
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero", details={"part_id": part_id})
        requested[part_id] = requested.get(part_id, 0) + quantity

    for part_id, quantity in requested.items():
        part = db.session.get(SparePart, part_id)
        if part is None:
            raise ValidationError(f"Spare part {part_id} not found")
        available = inventory_service.available_quantity(order.from_branch_id, part_id)
        if available < quantity:
            raise ValidationError(
                f"Insufficient stock for {part.name}",
                details={"part_id": part_id, "available": available, "requested": quantity},
            )
        order.items.append(TransferOrderItem(
            part_id=part.id,
            part_code=part.part_code,
            part_name=part.name,
            unit_cost_cents=part.default_cost_cents,
            quantity=quantity,
            item_status=ITEM_STATUS_PENDING,
        ))


def create_order(data: dict, actor: User) -> TransferOrder:
    """
    Create a PENDING transfer order and lock its units.

    Args:
        data: {type, from_branch_id?, to_branch_id, items, notes?}. Machine and
            SIM items are serial strings or {serial_number}; spare part items
            are {part_id, quantity}.
        actor: Creating user; must be authorized for the source branch

    Raises:
        ValidationError: bad input, unknown/inactive branch, unavailable unit
        ForbiddenError: actor not authorized for the source branch
        ConflictError: a unit is locked by another pending order
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    order_type = parse_choice(data.get("type") or data.get("order_type"), "type", ORDER_TYPES)
    from_branch_id = parse_int(data.get("from_branch_id"), "from_branch_id") or actor.branch_id
    to_branch_id = parse_int(data.get("to_branch_id"), "to_branch_id", required=True)
    if from_branch_id == to_branch_id:
        raise ValidationError("Source and destination branch must differ")

    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    notes = clean_str(data.get("notes"), "notes")
    return run_with_retry(lambda: open_order(order_type, from_branch_id, to_branch_id, items, notes, actor))


def open_order(
    order_type: str, from_branch_id: int, to_branch_id: int, items: list, notes: str | None, actor: User
) -> TransferOrder:
    """Build and lock one order inside the caller's transaction (no retry)."""
    from_branch = _get_active_branch(from_branch_id, "Source branch")
    to_branch = _get_active_branch(to_branch_id, "Destination branch")
    branch_scope.require_branch_access(actor, from_branch.id, "Not authorized to ship from this branch")

    order = TransferOrder(
        order_number=next_document_number(ORDER_NUMBER_PREFIX),
        order_type=order_type,
        status=ORDER_STATUS_PENDING,
        from_branch_id=from_branch.id,
        to_branch_id=to_branch.id,
        notes=notes,
        created_by_user_id=actor.id,
        created_by_name=actor.name,
        created_at=utcnow(),
    )
    db.session.add(order)

    if order_type == ORDER_TYPE_MACHINE:
        _add_machine_items(order, items, actor)
    elif order_type == ORDER_TYPE_SIM:
        _add_sim_items(order, items)
    else:
        _add_part_items(order, items)

    db.session.flush()

    audit_service.log_action(
        "TRANSFER_ORDER", order.id, "CREATED",
        {"order_number": order.order_number, "type": order_type, "items": len(order.items)},
        actor=actor, branch_id=from_branch.id,
    )
    queue_notification(
        type=TRANSFER_CREATED,
        branch_id=to_branch.id,
        title=f"Incoming transfer {order.order_number}",
        message=f"{from_branch.name} sent {len(order.items)} {order_type.lower()} item(s)",
        link=f"/transfer-orders/{order.id}",
        data={"order_id": order.id},
    )
    return order


# =============================================================================
# Queries
# =============================================================================

def list_orders(filters: dict, actor: User) -> list[TransferOrder]:
    """
    List transfer orders visible to the actor.

    filters: status, type, branch_id, direction (incoming|outgoing),
    from_date, to_date (datetimes), q (order number or item serial).
    """
    query = branch_scope.apply_branch_filter(
        db.session.query(TransferOrder), actor, TransferOrder.from_branch_id, TransferOrder.to_branch_id
    )

    if filters.get("status"):
        query = query.filter(TransferOrder.status == filters["status"])
    if filters.get("type"):
        query = query.filter(TransferOrder.order_type == filters["type"])

    branch_id = filters.get("branch_id")
    direction = filters.get("direction")
    if branch_id is not None:
        if direction == "incoming":
            query = query.filter(TransferOrder.to_branch_id == branch_id)
        elif direction == "outgoing":
            query = query.filter(TransferOrder.from_branch_id == branch_id)
        else:
            query = query.filter(db.or_(TransferOrder.from_branch_id == branch_id, TransferOrder.to_branch_id == branch_id))

    if filters.get("from_date"):
        query = query.filter(TransferOrder.created_at >= filters["from_date"])
    if filters.get("to_date"):
        query = query.filter(TransferOrder.created_at <= filters["to_date"])

    q = filters.get("q")
    if q:
        pattern = f"%{q}%"
        matching_items = db.select(TransferOrderItem.order_id).where(
            db.or_(TransferOrderItem.serial_number.ilike(pattern), TransferOrderItem.part_name.ilike(pattern))
        )
        query = query.filter(db.or_(TransferOrder.order_number.ilike(pattern), TransferOrder.id.in_(matching_items)))

    limit = filters.get("limit") or 100
    offset = filters.get("offset") or 0
    return query.order_by(TransferOrder.created_at.desc(), TransferOrder.id.desc()).offset(offset).limit(limit).all()


def list_pending(branch_id: int | None, order_type: str | None, actor: User) -> list[TransferOrder]:
    """PENDING orders awaiting receipt at the branch (any branch for global roles without a filter)."""
    branch_id = branch_scope.resolve_branch_filter(actor, branch_id)
    query = db.session.query(TransferOrder).filter(TransferOrder.status == ORDER_STATUS_PENDING)
    if branch_id is not None:
        query = query.filter(TransferOrder.to_branch_id == branch_id)
    elif not branch_scope.is_global(actor):
        return []
    if order_type:
        query = query.filter(TransferOrder.order_type == order_type)
    return query.order_by(TransferOrder.created_at.asc(), TransferOrder.id.asc()).all()


def get_pending_serials(branch_id: int | None, order_type: str | None, actor: User) -> list[str]:
    """Serials still locked by unresolved items of PENDING orders leaving the branch."""
    branch_id = branch_scope.resolve_branch_filter(actor, branch_id)
    if branch_id is None and not branch_scope.is_global(actor):
        return []
    query = (
        db.session.query(TransferOrderItem.serial_number)
        .join(TransferOrder, TransferOrder.id == TransferOrderItem.order_id)
        .filter(
            TransferOrder.status == ORDER_STATUS_PENDING,
            TransferOrderItem.item_status == ITEM_STATUS_PENDING,
            TransferOrderItem.serial_number.isnot(None),
        )
    )
    if branch_id is not None:
        query = query.filter(TransferOrder.from_branch_id == branch_id)
    if order_type:
        query = query.filter(TransferOrder.order_type == order_type)
    return sorted({serial for (serial,) in query.all()})


def get_order(order_id: int, actor: User) -> TransferOrder:
    order = _get_order(order_id)
    if not (
        branch_scope.can_access_branch(actor, order.from_branch_id)
        or branch_scope.can_access_branch(actor, order.to_branch_id)
    ):
        raise ForbiddenError("Not authorized for this transfer order")
    return order


def stats_summary(branch_id: int | None, actor: User) -> dict:
    branch_id = branch_scope.resolve_branch_filter(actor, branch_id)
    query = db.session.query(TransferOrder.status, func.count(TransferOrder.id))
    if branch_id is not None:
        query = query.filter(db.or_(TransferOrder.from_branch_id == branch_id, TransferOrder.to_branch_id == branch_id))
    elif not branch_scope.is_global(actor):
        query = query.filter(db.false())
    by_status = {status: 0 for status in ORDER_STATUSES}
    for status, count in query.group_by(TransferOrder.status).all():
        by_status[status] = count

    pending_incoming = pending_outgoing = 0
    if branch_id is not None:
        pending_incoming = db.session.query(func.count(TransferOrder.id)).filter(
            TransferOrder.status == ORDER_STATUS_PENDING, TransferOrder.to_branch_id == branch_id
        ).scalar()
        pending_outgoing = db.session.query(func.count(TransferOrder.id)).filter(
            TransferOrder.status == ORDER_STATUS_PENDING, TransferOrder.from_branch_id == branch_id
        ).scalar()

    item_query = db.session.query(TransferOrderItem.item_status, func.count(TransferOrderItem.id)).join(
        TransferOrder, TransferOrder.id == TransferOrderItem.order_id
    )
    if branch_id is not None:
        item_query = item_query.filter(
            db.or_(TransferOrder.from_branch_id == branch_id, TransferOrder.to_branch_id == branch_id)
        )
    elif not branch_scope.is_global(actor):
        item_query = item_query.filter(db.false())
    items = {ITEM_STATUS_PENDING: 0, ITEM_STATUS_ACCEPTED: 0, ITEM_STATUS_REJECTED: 0}
    for status, count in item_query.group_by(TransferOrderItem.item_status).all():
        items[status] = count

    return {
        "branch_id": branch_id,
        "by_status": by_status,
        "total": sum(by_status.values()),
        "pending_incoming": pending_incoming,
        "pending_outgoing": pending_outgoing,
        "items": items,
    }


# =============================================================================
# Item resolution
# =============================================================================

def _resolve_item(item: TransferOrderItem, item_status: str, notes: str | None) -> None:
    if not compare_and_swap(
        TransferOrderItem, item.id,
        expected={"item_status": ITEM_STATUS_PENDING},
        values={"item_status": item_status, "resolution_notes": notes, "resolved_at": utcnow()},
    ):
        raise ConflictError(f"Transfer item {item.id} was already resolved")


def _restore_item(order: TransferOrder, item: TransferOrderItem, actor: User, action: str) -> None:
    """Put a unit back the way it was before the order locked it."""
    if order.order_type == ORDER_TYPE_MACHINE:
        machine = db.session.query(Machine).filter_by(serial_number=item.serial_number).first()
        if machine is None:
            return
        payload = {"order_number": order.order_number}
        if item.previous_status == msm.READY_FOR_RETURN:
            # Back on the return shelf with the outcome the repair already recorded
            payload["resolution"] = machine.resolution
        msm.apply_transition(
            machine,
            item.previous_status,
            msm.TransitionContext.for_actor(
                actor,
                action=action,
                payload=payload,
                branch_id=order.from_branch_id,
            ),
        )
    elif order.order_type == ORDER_TYPE_SIM:
        sim = db.session.query(SimCard).filter_by(serial_number=item.serial_number).first()
        if sim is None:
            return
        if not compare_and_swap(
            SimCard, sim.id,
            expected={"status": SIM_STATUS_IN_TRANSIT},
            values={"status": item.previous_status or SIM_STATUS_ACTIVE},
        ):
            raise ConflictError(f"SIM card {sim.serial_number} changed concurrently")


def _accept_item(order: TransferOrder, item: TransferOrderItem, to_branch: Branch, actor: User) -> None:
    if order.order_type == ORDER_TYPE_MACHINE:
        machine = db.session.query(Machine).filter_by(serial_number=item.serial_number).first()
        if machine is None:
            raise ConflictError(f"Machine {item.serial_number} no longer exists")
        payload = {"branch_id": to_branch.id, "order_number": order.order_number}
        if machine.status == msm.RETURNING:
            target = msm.STANDBY
        elif to_branch.is_maintenance_center:
            target = msm.RECEIVED_AT_CENTER
            payload["origin_branch_id"] = order.from_branch_id
        else:
            target = item.previous_status
        msm.apply_transition(
            machine,
            target,
            msm.TransitionContext.for_actor(
                actor, action="TRANSFER_IN", payload=payload, branch_id=to_branch.id
            ),
        )

    elif order.order_type == ORDER_TYPE_SIM:
        sim = db.session.query(SimCard).filter_by(serial_number=item.serial_number).first()
        if sim is None:
            raise ConflictError(f"SIM card {item.serial_number} no longer exists")
        if not compare_and_swap(
            SimCard, sim.id,
            expected={"status": SIM_STATUS_IN_TRANSIT},
            values={"status": SIM_STATUS_ACTIVE, "branch_id": to_branch.id},
        ):
            raise ConflictError(f"SIM card {sim.serial_number} changed concurrently")

    else:
        reason = f"Transfer {order.order_number}"
        if not inventory_service.adjust_stock(
            order.from_branch_id, item.part_id, -item.quantity,
            movement_type=inventory_service.MOVEMENT_TRANSFER_OUT,
            reason=reason, source_type="TRANSFER_ORDER", source_id=order.id, actor=actor,
        ):
            raise ConflictError(
                f"Source branch no longer has {item.quantity} x {item.part_name}",
                details={"part_id": item.part_id},
            )
        inventory_service.adjust_stock(
            to_branch.id, item.part_id, item.quantity,
            movement_type=inventory_service.MOVEMENT_TRANSFER_IN,
            reason=reason, source_type="TRANSFER_ORDER", source_id=order.id, actor=actor,
        )


def _match_item(order: TransferOrder, entry: dict) -> TransferOrderItem:
    item_id = parse_int(entry.get("item_id"), "item_id")
    serial = clean_str(entry.get("serial_number"), "serial_number")
    part_id = parse_int(entry.get("part_id"), "part_id")

    for item in order.items:
        if item_id is not None and item.id == item_id:
            return item
        if item_id is None and serial and item.serial_number == serial:
            return item
        if item_id is None and not serial and part_id is not None and item.part_id == part_id:
            return item
    raise ValidationError("Item is not part of this transfer order", details={"item": entry})


# =============================================================================
# Receive / reject / cancel
# =============================================================================

def receive_order(order_id: int, received_items: list | None, actor: User) -> TransferOrder:
    """
    Resolve items of a PENDING order at the destination branch.

    Args:
        received_items: [{item_id | serial_number | part_id, accepted=True, notes}].
            None accepts every unresolved item.

    Raises:
        NotFoundError, ForbiddenError
        ConflictError: order not PENDING, or an item was already resolved
        ValidationError: reference to an item outside the order
    """
    def _op() -> TransferOrder:
        order = _get_order(order_id)
        branch_scope.require_branch_access(actor, order.to_branch_id, "Only the destination branch can receive this order")
        _require_pending(order)
        to_branch = db.session.get(Branch, order.to_branch_id)

        if received_items is None:
            decisions = [(item, True, None) for item in order.items if item.item_status == ITEM_STATUS_PENDING]
        else:
            if not isinstance(received_items, list):
                raise ValidationError("items must be a list")
            decisions = []
            seen: set[int] = set()
            for entry in received_items:
                if not isinstance(entry, dict):
                    raise ValidationError("Each received item must be an object")
                item = _match_item(order, entry)
                if item.item_status != ITEM_STATUS_PENDING or item.id in seen:
                    raise ConflictError(
                        f"Transfer item {item.id} was already resolved",
                        details={"item_id": item.id, "item_status": item.item_status},
                    )
                seen.add(item.id)
                accepted = parse_bool(entry.get("accepted"), "accepted", default=True)
                decisions.append((item, accepted, clean_str(entry.get("notes"), "notes")))

        if not decisions:
            raise ValidationError("No unresolved items to receive")

        accepted_count = rejected_count = 0
        for item, accepted, notes in decisions:
            if accepted:
                _accept_item(order, item, to_branch, actor)
                _resolve_item(item, ITEM_STATUS_ACCEPTED, notes)
                accepted_count += 1
            else:
                _restore_item(order, item, actor, "TRANSFER_ITEM_REJECTED")
                _resolve_item(item, ITEM_STATUS_REJECTED, notes)
                rejected_count += 1

        now = utcnow()
        still_pending = any(item.item_status == ITEM_STATUS_PENDING for item in order.items)
        if not still_pending:
            if not compare_and_swap(
                TransferOrder, order.id,
                expected={"status": ORDER_STATUS_PENDING},
                values={
                    "status": ORDER_STATUS_COMPLETED,
                    "received_by_user_id": actor.id,
                    "received_by_name": actor.name,
                    "received_at": now,
                },
            ):
                raise ConflictError(f"Transfer order {order.order_number} changed concurrently")

        audit_service.log_action(
            "TRANSFER_ORDER", order.id, "RECEIVED",
            {"accepted": accepted_count, "rejected": rejected_count, "completed": not still_pending},
            actor=actor, branch_id=order.to_branch_id,
        )
        queue_notification(
            type=TRANSFER_RECEIVED,
            branch_id=order.from_branch_id,
            title=f"Transfer {order.order_number} received",
            message=f"{accepted_count} accepted, {rejected_count} rejected",
            link=f"/transfer-orders/{order.id}",
            data={"order_id": order.id, "accepted": accepted_count, "rejected": rejected_count},
        )
        return order

    return run_with_retry(_op)


def _close_order(order: TransferOrder, status: str, values: dict, actor: User, action: str, notes: str | None) -> None:
    if not compare_and_swap(
        TransferOrder, order.id,
        expected={"status": ORDER_STATUS_PENDING},
        values={"status": status, **values},
    ):
        raise ConflictError(f"Transfer order {order.order_number} changed concurrently")
    for item in order.items:
        if item.item_status == ITEM_STATUS_PENDING:
            _restore_item(order, item, actor, action)
            _resolve_item(item, ITEM_STATUS_REJECTED, notes)


def reject_order(order_id: int, reason: str | None, actor: User) -> TransferOrder:
    """Refuse a whole PENDING order at the destination; every unit is restored at the source."""
    reason = clean_str(reason, "reason")
    if not reason:
        raise ValidationError("Rejection reason is required")

    def _op() -> TransferOrder:
        order = _get_order(order_id)
        branch_scope.require_branch_access(actor, order.to_branch_id, "Only the destination branch can reject this order")
        _require_pending(order)

        _close_order(
            order, ORDER_STATUS_REJECTED,
            {
                "rejection_reason": reason,
                "rejected_at": utcnow(),
                "received_by_user_id": actor.id,
                "received_by_name": actor.name,
            },
            actor, "TRANSFER_REJECTED", reason,
        )

        audit_service.log_action(
            "TRANSFER_ORDER", order.id, "REJECTED", {"reason": reason},
            actor=actor, branch_id=order.to_branch_id,
        )
        queue_notification(
            type=TRANSFER_REJECTED,
            branch_id=order.from_branch_id,
            title=f"Transfer {order.order_number} rejected",
            message=reason,
            link=f"/transfer-orders/{order.id}",
            data={"order_id": order.id},
        )
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, actor: User) -> TransferOrder:
    """Withdraw a PENDING order. Allowed for its creator, source-branch users and global roles."""
    def _op() -> TransferOrder:
        order = _get_order(order_id)
        allowed = (
            order.created_by_user_id == actor.id
            or branch_scope.is_global(actor)
            or (actor.branch_id is not None and actor.branch_id == order.from_branch_id)
        )
        if not allowed:
            raise ForbiddenError("Not authorized to cancel this transfer order")
        _require_pending(order)

        _close_order(
            order, ORDER_STATUS_CANCELLED,
            {"cancelled_by_user_id": actor.id, "cancelled_at": utcnow()},
            actor, "TRANSFER_CANCELLED", "Order cancelled",
        )

        audit_service.log_action(
            "TRANSFER_ORDER", order.id, "CANCELLED", None,
            actor=actor, branch_id=order.from_branch_id,
        )
        queue_notification(
            type=TRANSFER_CANCELLED,
            branch_id=order.to_branch_id,
            title=f"Transfer {order.order_number} cancelled",
            link=f"/transfer-orders/{order.id}",
            data={"order_id": order.id},
        )
        return order

    return run_with_retry(_op)
