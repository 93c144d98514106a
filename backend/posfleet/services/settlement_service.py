# Overview: Branch debts owed to maintenance centers and their receipt-backed settlement.

"""
Settlement Ledger

A debt is opened when an approved repair with a positive cost is completed:
the machine's origin branch owes the maintenance center. Payment is
all-or-nothing and must quote a receipt number that was never used before,
neither in the payment journal nor on another debt.

INVARIANTS:
- remaining_amount_cents >= 0
- status == PAID  <=>  remaining == 0 and paid == amount
- receipt numbers are globally unique (unique constraints back the check)
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, BranchDebt, LedgerPayment, User
from ..money import format_cents, split_installments
from ..time_utils import utcnow
from ..validation import clean_str
from . import audit_service, branch_scope
from .concurrency import compare_and_swap, run_with_retry
from .notification_service import DEBT_PAID, queue_notification

DEBT_STATUS_PENDING = "PENDING_PAYMENT"
DEBT_STATUS_PAID = "PAID"
DEBT_STATUSES = (DEBT_STATUS_PENDING, DEBT_STATUS_PAID)

PAYMENT_TYPE_MAINTENANCE = "MAINTENANCE_CENTER"
MAX_INSTALLMENTS = 24


def open_debt(
    *,
    debtor_branch_id: int,
    creditor_branch_id: int,
    amount_cents: int,
    machine_serial: str | None = None,
    assignment_id: int | None = None,
    parts_details: list | None = None,
) -> BranchDebt:
    """
    Open a PENDING_PAYMENT debt inside the caller's transaction.

    amount_cents is already in minor units (rounded once where the amount
    entered the system) and must be positive.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Debt amount must be greater than zero")
    if debtor_branch_id is None or creditor_branch_id is None:
        raise ValidationError("Debtor and creditor branches are required")
    if debtor_branch_id == creditor_branch_id:
        raise ValidationError("A branch cannot owe itself")

    debt = BranchDebt(
        debtor_branch_id=debtor_branch_id,
        creditor_branch_id=creditor_branch_id,
        assignment_id=assignment_id,
        machine_serial=machine_serial,
        amount_cents=amount_cents,
        paid_amount_cents=0,
        remaining_amount_cents=amount_cents,
        parts_details=parts_details,
        status=DEBT_STATUS_PENDING,
        created_at=utcnow(),
    )
    db.session.add(debt)
    db.session.flush()
    return debt


def _get_debt(debt_id: int) -> BranchDebt:
    debt = db.session.get(BranchDebt, debt_id)
    if debt is None:
        raise NotFoundError("Debt not found")
    return debt


def receipt_in_use(receipt_number: str) -> bool:
    journal_hit = db.session.query(LedgerPayment.id).filter(LedgerPayment.receipt_number == receipt_number).first()
    if journal_hit:
        return True
    debt_hit = db.session.query(BranchDebt.id).filter(BranchDebt.receipt_number == receipt_number).first()
    return debt_hit is not None


def pay(debt_id: int, receipt_number: str | None, actor: User, payment_place: str | None = None) -> BranchDebt:
    """
    Settle a debt in full against a receipt.

    Raises:
        ValidationError: receipt number missing
        NotFoundError: unknown debt
        ForbiddenError: actor neither in the debtor branch nor global
        ConflictError: receipt already used, or debt not PENDING_PAYMENT
    """
    receipt_number = clean_str(receipt_number, "receipt_number", max_length=64)
    if not receipt_number:
        raise ValidationError("Receipt number is required")
    payment_place = clean_str(payment_place, "payment_place", max_length=128)

    def _op() -> BranchDebt:
        debt = _get_debt(debt_id)
        branch_scope.require_branch_access(actor, debt.debtor_branch_id, "Only the debtor branch can pay this debt")

        if receipt_in_use(receipt_number):
            raise ConflictError(
                f"Receipt number {receipt_number} was already used",
                details={"receipt_number": receipt_number},
            )
        if debt.status != DEBT_STATUS_PENDING:
            raise ConflictError(f"Debt {debt.id} is already {debt.status}", details={"status": debt.status})

        now = utcnow()
        if not compare_and_swap(
            BranchDebt, debt.id,
            expected={"status": DEBT_STATUS_PENDING},
            values={
                "status": DEBT_STATUS_PAID,
                "paid_amount_cents": debt.amount_cents,
                "remaining_amount_cents": 0,
                "receipt_number": receipt_number,
                "payment_place": payment_place,
                "paid_by": actor.name,
                "paid_by_user_id": actor.id,
                "paid_at": now,
            },
        ):
            raise ConflictError(f"Debt {debt.id} was settled concurrently")

        db.session.add(LedgerPayment(
            debt_id=debt.id,
            amount_cents=debt.amount_cents,
            payment_type=PAYMENT_TYPE_MAINTENANCE,
            reason=f"Maintenance {debt.machine_serial or ''}".strip(),
            receipt_number=receipt_number,
            payment_place=payment_place,
            user_id=actor.id,
            user_name=actor.name,
            branch_id=debt.debtor_branch_id,
            created_at=now,
        ))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Receipt number {receipt_number} was already used",
                details={"receipt_number": receipt_number},
            ) from exc

        audit_service.log_action(
            "BRANCH_DEBT", debt.id, "PAID",
            {"amount_cents": debt.amount_cents, "receipt_number": receipt_number, "payment_place": payment_place},
            actor=actor, branch_id=debt.debtor_branch_id,
        )
        queue_notification(
            type=DEBT_PAID,
            branch_id=debt.creditor_branch_id,
            title=f"Debt for {debt.machine_serial or 'repair'} paid",
            message=f"Receipt {receipt_number}",
            link=f"/pending-payments/{debt.id}",
            data={"debt_id": debt.id, "amount_cents": debt.amount_cents},
        )
        return debt

    return run_with_retry(_op)


def list_debts(filters: dict, actor: User) -> list[BranchDebt]:
    """filters: status, branch_id (debtor), center_branch_id (creditor), machine_serial."""
    query = branch_scope.apply_branch_filter(
        db.session.query(BranchDebt), actor, BranchDebt.debtor_branch_id, BranchDebt.creditor_branch_id
    )
    if filters.get("status"):
        query = query.filter(BranchDebt.status == filters["status"])
    if filters.get("branch_id") is not None:
        query = query.filter(BranchDebt.debtor_branch_id == filters["branch_id"])
    if filters.get("center_branch_id") is not None:
        query = query.filter(BranchDebt.creditor_branch_id == filters["center_branch_id"])
    if filters.get("machine_serial"):
        query = query.filter(BranchDebt.machine_serial == filters["machine_serial"])
    return query.order_by(BranchDebt.created_at.desc(), BranchDebt.id.desc()).all()


def get_debt(debt_id: int, actor: User) -> BranchDebt:
    debt = _get_debt(debt_id)
    if not (
        branch_scope.can_access_branch(actor, debt.debtor_branch_id)
        or branch_scope.can_access_branch(actor, debt.creditor_branch_id)
    ):
        raise ForbiddenError("Not authorized for this debt")
    return debt


def summary(branch_id: int | None, center_branch_id: int | None, actor: User) -> dict:
    """
    Outstanding (PENDING_PAYMENT) total and count.

    Without filters a maintenance-center user sees what is owed to their
    center and anybody else what their branch owes; global roles see
    everything.
    """
    if branch_id is None and center_branch_id is None and not branch_scope.is_global(actor):
        own = db.session.get(Branch, actor.branch_id) if actor.branch_id is not None else None
        if own is not None and own.is_maintenance_center:
            center_branch_id = own.id
        else:
            branch_id = actor.branch_id

    query = branch_scope.apply_branch_filter(
        db.session.query(
            func.coalesce(func.sum(BranchDebt.remaining_amount_cents), 0),
            func.count(BranchDebt.id),
        ).filter(BranchDebt.status == DEBT_STATUS_PENDING),
        actor,
        BranchDebt.debtor_branch_id,
        BranchDebt.creditor_branch_id,
    )
    if branch_id is not None:
        query = query.filter(BranchDebt.debtor_branch_id == branch_id)
    if center_branch_id is not None:
        query = query.filter(BranchDebt.creditor_branch_id == center_branch_id)

    total, count = query.one()
    return {
        "branch_id": branch_id,
        "center_branch_id": center_branch_id,
        "total_amount_cents": int(total or 0),
        "count": int(count or 0),
    }


def installment_plan(debt_id: int, count: int, actor: User) -> dict:
    """
    Proposed equal installments for the debt's remaining balance.

    Informational only: payment is still all-or-nothing through pay().
    """
    if count is None:
        raise ValidationError("count is required")
    if count < 1 or count > MAX_INSTALLMENTS:
        raise ValidationError(f"count must be between 1 and {MAX_INSTALLMENTS}")
    debt = get_debt(debt_id, actor)
    amounts = split_installments(debt.amount_cents, debt.paid_amount_cents, count)
    return {
        "debt_id": debt.id,
        "status": debt.status,
        "remaining_amount_cents": debt.remaining_amount_cents,
        "count": count,
        "installments": [
            {"number": index, "amount_cents": cents, "amount": format_cents(cents)}
            for index, cents in enumerate(amounts, start=1)
        ],
    }
