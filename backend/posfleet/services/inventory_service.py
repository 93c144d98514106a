# Overview: Spare part stock per branch with an append-only movement journal.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import BranchPartStock, SparePart, StockMovement, TransferOrder, TransferOrderItem, User
from ..money import line_total_cents, to_cents
from ..time_utils import utcnow
from ..validation import clean_str, parse_int
from .concurrency import compare_and_swap

MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_REPAIR_USE = "REPAIR_USE"

# Compare-and-swap attempts before giving up on a contended stock row
_CAS_ATTEMPTS = 3


def get_quantity(branch_id: int, part_id: int) -> int:
    quantity = (
        db.session.query(BranchPartStock.quantity)
        .filter_by(branch_id=branch_id, part_id=part_id)
        .scalar()
    )
    return quantity or 0


def reserved_quantity(branch_id: int, part_id: int) -> int:
    """Quantity already promised to unresolved items of PENDING outgoing spare-part orders."""
    total = (
        db.session.query(func.coalesce(func.sum(TransferOrderItem.quantity), 0))
        .join(TransferOrder, TransferOrder.id == TransferOrderItem.order_id)
        .filter(
            TransferOrder.from_branch_id == branch_id,
            TransferOrder.order_type == "SPARE_PART",
            TransferOrder.status == "PENDING",
            TransferOrderItem.part_id == part_id,
            TransferOrderItem.item_status == "PENDING",
        )
        .scalar()
    )
    return int(total or 0)


def available_quantity(branch_id: int, part_id: int) -> int:
    return get_quantity(branch_id, part_id) - reserved_quantity(branch_id, part_id)


def _get_or_create_stock(branch_id: int, part_id: int) -> BranchPartStock:
    stock = db.session.query(BranchPartStock).filter_by(branch_id=branch_id, part_id=part_id).first()
    if stock is not None:
        return stock
    try:
        with db.session.begin_nested():
            stock = BranchPartStock(branch_id=branch_id, part_id=part_id, quantity=0)
            db.session.add(stock)
    except IntegrityError:
        stock = db.session.query(BranchPartStock).filter_by(branch_id=branch_id, part_id=part_id).one()
    return stock


def adjust_stock(
    branch_id: int,
    part_id: int,
    delta: int,
    *,
    movement_type: str,
    reason: str | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
    actor: User | None = None,
) -> bool:
    """
    Add `delta` (signed) to the branch's stock of a part and journal it.

    Returns False without changing anything when a decrement would take the
    quantity below zero. Concurrent writers are detected with
    compare-and-swap on the previous quantity and the read is retried.
    """
    stock = _get_or_create_stock(branch_id, part_id)
    for _ in range(_CAS_ATTEMPTS):
        db.session.refresh(stock)
        current = stock.quantity
        new_quantity = current + delta
        if new_quantity < 0:
            return False
        if compare_and_swap(
            BranchPartStock,
            stock.id,
            expected={"quantity": current},
            values={"quantity": new_quantity, "updated_at": utcnow()},
        ):
            break
    else:
        return False

    db.session.add(StockMovement(
        branch_id=branch_id,
        part_id=part_id,
        movement_type=movement_type,
        quantity_delta=delta,
        reason=reason,
        source_type=source_type,
        source_id=source_id,
        performed_by_id=actor.id if actor else None,
        occurred_at=utcnow(),
    ))
    return True


def list_stock(branch_id: int) -> list[BranchPartStock]:
    return (
        db.session.query(BranchPartStock)
        .filter(BranchPartStock.branch_id == branch_id)
        .order_by(BranchPartStock.part_id.asc())
        .all()
    )


def price_parts(raw_parts) -> tuple[list[dict], int]:
    """
    Normalize a used/proposed parts list and compute its total in cents.

    Each entry is {part_id?, name?, quantity, unit_cost?}. Catalog parts
    snapshot their name and default cost unless an explicit unit_cost (major
    units, rounded once) is given; free-text parts need a name and a cost.

    Returns (parts, total_cents) where every part carries unit_cost_cents and
    line_total_cents.
    """
    if raw_parts is None:
        return [], 0
    if not isinstance(raw_parts, list):
        raise ValidationError("parts must be a list")

    priced: list[dict] = []
    for raw in raw_parts:
        if not isinstance(raw, dict):
            raise ValidationError("Each part must be an object")
        quantity = parse_int(raw.get("quantity", 1), "quantity", required=True)
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero")

        part_id = parse_int(raw.get("part_id"), "part_id")
        part = None
        if part_id is not None:
            part = db.session.get(SparePart, part_id)
            if part is None:
                raise ValidationError(f"Spare part {part_id} not found")

        if raw.get("unit_cost") is not None:
            unit_cost_cents = to_cents(raw["unit_cost"], field="unit_cost")
        elif raw.get("unit_cost_cents") is not None:
            unit_cost_cents = parse_int(raw["unit_cost_cents"], "unit_cost_cents", minimum=0)
        elif part is not None:
            unit_cost_cents = part.default_cost_cents
        else:
            raise ValidationError("unit_cost is required for parts outside the catalog")
        if unit_cost_cents < 0:
            raise ValidationError("unit_cost must not be negative")

        name = part.name if part is not None else clean_str(raw.get("name"), "name", required=True)
        priced.append({
            "part_id": part.id if part is not None else None,
            "part_code": part.part_code if part is not None else None,
            "name": name,
            "quantity": quantity,
            "unit_cost_cents": unit_cost_cents,
            "line_total_cents": line_total_cents(unit_cost_cents, quantity),
        })

    return priced, sum(p["line_total_cents"] for p in priced)
