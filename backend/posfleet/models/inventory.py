from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Machine(db.Model):
    """
    Physical POS terminal tracked by serial number.

    status is only ever written by machine_state_service; every write goes
    through a compare-and-swap on the previous status and leaves a
    MachineMovementLog row behind.
    """
    __tablename__ = "machines"
    __table_args__ = (
        db.Index("ix_machines_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    manufacturer = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="NEW", index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Branch that sent the machine in for repair (set on receipt at a center)
    origin_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    current_assignment_id = db.Column(db.Integer, nullable=True)
    current_technician_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    resolution = db.Column(db.String(32), nullable=True)  # REPAIRED, SCRAPPED, REJECTED_REPAIR
    notes = db.Column(db.Text, nullable=True)

    # Latest inspection findings at the center
    problem_description = db.Column(db.Text, nullable=True)
    estimated_cost_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    branch = db.relationship("Branch", foreign_keys=[branch_id])
    origin_branch = db.relationship("Branch", foreign_keys=[origin_branch_id])

    def __repr__(self) -> str:
        return f"<Machine {self.serial_number} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "status": self.status,
            "branch_id": self.branch_id,
            "origin_branch_id": self.origin_branch_id,
            "current_assignment_id": self.current_assignment_id,
            "current_technician_id": self.current_technician_id,
            "resolution": self.resolution,
            "notes": self.notes,
            "problem_description": self.problem_description,
            "estimated_cost_cents": self.estimated_cost_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MachineMovementLog(db.Model):
    """
    Append-only history of machine status changes and ownership moves.
    """
    __tablename__ = "machine_movement_logs"
    __table_args__ = (
        db.Index("ix_machine_movement_machine_occurred", "machine_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.Integer, db.ForeignKey("machines.id"), nullable=False, index=True)
    serial_number = db.Column(db.String(64), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    performed_by = db.Column(db.String(128), nullable=True)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "serial_number": self.serial_number,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "details": self.details,
            "performed_by": self.performed_by,
            "performed_by_id": self.performed_by_id,
            "branch_id": self.branch_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class SimCard(db.Model):
    __tablename__ = "sim_cards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    sim_type = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, IN_TRANSIT
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "sim_type": self.sim_type,
            "status": self.status,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
        }


class SparePart(db.Model):
    """Spare part catalog entry. Unit cost is stored in cents."""
    __tablename__ = "spare_parts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    part_code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    default_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "part_code": self.part_code,
            "name": self.name,
            "default_cost_cents": self.default_cost_cents,
            "is_active": self.is_active,
        }


class BranchPartStock(db.Model):
    """
    On-hand quantity of one spare part at one branch.

    Quantity is adjusted through compare-and-swap on the previous value so
    concurrent deductions never overwrite each other.
    """
    __tablename__ = "branch_part_stock"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "part_id", name="uq_branch_part_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("spare_parts.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    part = db.relationship("SparePart")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "part_id": self.part_id,
            "quantity": self.quantity,
        }


class StockMovement(db.Model):
    """
    Append-only spare part journal.

    quantity_delta is signed: negative for OUT (transfer out, repair
    consumption), positive for IN.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_branch_part", "branch_id", "part_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    part_id = db.Column(db.Integer, db.ForeignKey("spare_parts.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(32), nullable=False)  # TRANSFER_IN, TRANSFER_OUT, REPAIR_USE
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    source_type = db.Column(db.String(32), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "part_id": self.part_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "performed_by_id": self.performed_by_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
