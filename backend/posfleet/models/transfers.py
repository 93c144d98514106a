from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class TransferOrder(db.Model):
    """
    Inter-branch shipment of machines, SIM cards or spare parts.

    LIFECYCLE:
    1. PENDING: created by the source branch, units locked (machines/SIMs IN_TRANSIT)
    2. COMPLETED: every item resolved by the destination branch
    3. REJECTED: destination refused the whole order, units restored at source
    4. CANCELLED: withdrawn by the source before receipt, units restored

    Items carry value snapshots so later catalog edits never rewrite history.
    """
    __tablename__ = "transfer_orders"
    __table_args__ = (
        db.Index("ix_transfer_orders_to_status", "to_branch_id", "status"),
        db.Index("ix_transfer_orders_from_status", "from_branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    order_type = db.Column(db.String(16), nullable=False, index=True)  # MACHINE, SIM, SPARE_PART
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_name = db.Column(db.String(128), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])
    items = db.relationship(
        "TransferOrderItem",
        backref="order",
        lazy=True,
        order_by="TransferOrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "status": self.status,
            "from_branch_id": self.from_branch_id,
            "from_branch_name": self.from_branch.name if self.from_branch else None,
            "to_branch_id": self.to_branch_id,
            "to_branch_name": self.to_branch.name if self.to_branch else None,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "received_by_user_id": self.received_by_user_id,
            "received_by_name": self.received_by_name,
            "received_at": to_utc_z(self.received_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "item_count": len(self.items),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransferOrderItem(db.Model):
    __tablename__ = "transfer_order_items"
    __table_args__ = (
        db.Index("ix_transfer_order_items_serial_status", "serial_number", "item_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("transfer_orders.id"), nullable=False, index=True)

    # Value snapshot at order creation
    serial_number = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    manufacturer = db.Column(db.String(64), nullable=True)
    part_id = db.Column(db.Integer, db.ForeignKey("spare_parts.id"), nullable=True)
    part_code = db.Column(db.String(64), nullable=True)
    part_name = db.Column(db.String(128), nullable=True)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # Status of the referenced unit before the order locked it
    previous_status = db.Column(db.String(32), nullable=True)

    item_status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, ACCEPTED, REJECTED
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "serial_number": self.serial_number,
            "model": self.model,
            "manufacturer": self.manufacturer,
            "part_id": self.part_id,
            "part_code": self.part_code,
            "part_name": self.part_name,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity": self.quantity,
            "previous_status": self.previous_status,
            "item_status": self.item_status,
            "resolution_notes": self.resolution_notes,
            "resolved_at": to_utc_z(self.resolved_at),
        }


class DocumentSequence(db.Model):
    """
    Per-prefix/per-day counter backing human-readable document numbers.

    The counter row is advanced with a single UPDATE ... SET next = next + 1
    so two concurrent requests never receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "period", name="uq_document_sequences_prefix_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    period = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
