from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ServiceAssignment(db.Model):
    """
    A technician's repair job on one machine at a maintenance center.

    A machine may have at most one assignment that is not COMPLETED; the
    partial unique index below enforces it at the database level as well.
    """
    __tablename__ = "service_assignments"
    __table_args__ = (
        db.Index(
            "uq_service_assignments_open_machine",
            "machine_id",
            unique=True,
            sqlite_where=db.text("status != 'COMPLETED'"),
            postgresql_where=db.text("status != 'COMPLETED'"),
        ),
        db.Index("ix_service_assignments_technician_status", "technician_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.Integer, db.ForeignKey("machines.id"), nullable=False, index=True)
    serial_number = db.Column(db.String(64), nullable=False, index=True)

    technician_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    technician_name = db.Column(db.String(128), nullable=True)

    # Maintenance center doing the work and the branch that owns the machine
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    origin_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="ASSIGNED", index=True)

    used_parts = db.Column(db.JSON, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    approval_status = db.Column(db.String(16), nullable=False, default="NONE")  # NONE, PENDING, APPROVED, REJECTED
    approval_request_id = db.Column(db.Integer, nullable=True)

    resolution = db.Column(db.String(32), nullable=True)
    action_taken = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    machine = db.relationship("Machine")
    logs = db.relationship("ServiceAssignmentLog", backref="assignment", lazy=True, order_by="ServiceAssignmentLog.id")

    def to_dict(self, include_logs: bool = False) -> dict:
        data = {
            "id": self.id,
            "machine_id": self.machine_id,
            "serial_number": self.serial_number,
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "branch_id": self.branch_id,
            "origin_branch_id": self.origin_branch_id,
            "status": self.status,
            "used_parts": self.used_parts or [],
            "total_cost_cents": self.total_cost_cents,
            "approval_status": self.approval_status,
            "approval_request_id": self.approval_request_id,
            "resolution": self.resolution,
            "action_taken": self.action_taken,
            "rejection_reason": self.rejection_reason,
            "notes": self.notes,
            "assigned_at": to_utc_z(self.assigned_at),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
        }
        if include_logs:
            data["logs"] = [log.to_dict() for log in self.logs]
        return data


class ServiceAssignmentLog(db.Model):
    __tablename__ = "service_assignment_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("service_assignments.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    performed_by = db.Column(db.String(128), nullable=True)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "action": self.action,
            "details": self.details,
            "performed_by": self.performed_by,
            "performed_by_id": self.performed_by_id,
            "performed_at": to_utc_z(self.performed_at),
        }


class ApprovalRequest(db.Model):
    """
    Cost approval asked of the branch that owns a machine under repair.

    Two variants share the table:
    - per-assignment: assignment_id set, request_key "ASSIGNMENT:<id>"
    - batch: assignment_id NULL, request_key "BATCH:<serial>", never opens a debt

    At most one PENDING request may exist per request_key.
    """
    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index(
            "uq_approval_requests_pending_key",
            "request_key",
            unique=True,
            sqlite_where=db.text("status = 'PENDING'"),
            postgresql_where=db.text("status = 'PENDING'"),
        ),
        db.Index("ix_approval_requests_target_status", "target_branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("service_assignments.id"), nullable=True, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey("machines.id"), nullable=True)
    serial_number = db.Column(db.String(64), nullable=False, index=True)
    request_key = db.Column(db.String(96), nullable=False, index=True)

    center_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    target_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    proposed_parts = db.Column(db.JSON, nullable=True)
    proposed_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    requested_by_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    responder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    responder_name = db.Column(db.String(128), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    @property
    def is_batch(self) -> bool:
        return self.assignment_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "machine_id": self.machine_id,
            "serial_number": self.serial_number,
            "request_key": self.request_key,
            "variant": "BATCH" if self.is_batch else "ASSIGNMENT",
            "center_branch_id": self.center_branch_id,
            "target_branch_id": self.target_branch_id,
            "proposed_parts": self.proposed_parts or [],
            "proposed_cost_cents": self.proposed_cost_cents,
            "notes": self.notes,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_by_name": self.requested_by_name,
            "created_at": to_utc_z(self.created_at),
            "responder_id": self.responder_id,
            "responder_name": self.responder_name,
            "responded_at": to_utc_z(self.responded_at),
            "rejection_reason": self.rejection_reason,
        }
