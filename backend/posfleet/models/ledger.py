from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class BranchDebt(db.Model):
    """
    Amount a branch owes a maintenance center for an approved repair.

    INVARIANT: remaining_amount_cents == 0 exactly when status == PAID, and
    paid_amount_cents == amount_cents at that point. Payment is all-or-nothing.
    """
    __tablename__ = "branch_debts"
    __table_args__ = (
        db.CheckConstraint("remaining_amount_cents >= 0", name="ck_branch_debts_remaining_non_negative"),
        db.CheckConstraint("amount_cents > 0", name="ck_branch_debts_amount_positive"),
        db.Index("ix_branch_debts_debtor_status", "debtor_branch_id", "status"),
        db.Index("ix_branch_debts_creditor_status", "creditor_branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    debtor_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    creditor_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    assignment_id = db.Column(db.Integer, db.ForeignKey("service_assignments.id"), nullable=True, index=True)
    machine_serial = db.Column(db.String(64), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False)
    parts_details = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING_PAYMENT", index=True)  # PENDING_PAYMENT, PAID

    receipt_number = db.Column(db.String(64), nullable=True, unique=True)
    payment_place = db.Column(db.String(128), nullable=True)
    paid_by = db.Column(db.String(128), nullable=True)
    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    debtor_branch = db.relationship("Branch", foreign_keys=[debtor_branch_id])
    creditor_branch = db.relationship("Branch", foreign_keys=[creditor_branch_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "debtor_branch_id": self.debtor_branch_id,
            "debtor_branch_name": self.debtor_branch.name if self.debtor_branch else None,
            "creditor_branch_id": self.creditor_branch_id,
            "creditor_branch_name": self.creditor_branch.name if self.creditor_branch else None,
            "assignment_id": self.assignment_id,
            "machine_serial": self.machine_serial,
            "amount_cents": self.amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "parts_details": self.parts_details or [],
            "status": self.status,
            "receipt_number": self.receipt_number,
            "payment_place": self.payment_place,
            "paid_by": self.paid_by,
            "paid_by_user_id": self.paid_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }


class LedgerPayment(db.Model):
    """
    Append-only payment journal. receipt_number is globally unique.
    """
    __tablename__ = "ledger_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    debt_id = db.Column(db.Integer, db.ForeignKey("branch_debts.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_type = db.Column(db.String(32), nullable=False, default="MAINTENANCE_CENTER")
    reason = db.Column(db.String(255), nullable=True)
    receipt_number = db.Column(db.String(64), nullable=False, unique=True)
    payment_place = db.Column(db.String(128), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    user_name = db.Column(db.String(128), nullable=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "debt_id": self.debt_id,
            "amount_cents": self.amount_cents,
            "payment_type": self.payment_type,
            "reason": self.reason,
            "receipt_number": self.receipt_number,
            "payment_place": self.payment_place,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
        }
