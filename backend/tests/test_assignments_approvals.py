"""
Service assignment and repair approval tests.

Verifies:
- Assignment lifecycle drives the machine through the center statuses
- Positive repair cost needs an APPROVED decision before completion
- Approval opens exactly one debt, rejection none
- A request can only be answered once
- Batch approvals never open a debt
"""

import pytest

from posfleet.errors import ConflictError, ForbiddenError, PreconditionFailed, ValidationError
from posfleet.extensions import db
from posfleet.models import ApprovalRequest, BranchDebt, Machine, ServiceAssignment, ServiceAssignmentLog
from posfleet.permissions import Role
from posfleet.services import approval_service, assignment_service, inventory_service
from posfleet.services import machine_state_service as msm
from posfleet.services.concurrency import commit_session, rollback_session


@pytest.fixture
def lcd(make_part, set_stock, center):
    part = make_part("PRT-LCD", "LCD screen", 25000)
    set_stock(center, part, 5)
    return part


def _request_approval(assignment, technician, part, quantity=2):
    assignment_service.request_approval(
        assignment.id, [{"part_id": part.id, "quantity": quantity}], "Cracked screen", technician
    )
    commit_session()
    return db.session.get(ServiceAssignment, assignment.id)


def _machine(assignment):
    return db.session.get(Machine, assignment.machine_id)


# =============================================================================
# ASSIGN / START
# =============================================================================


class TestAssign:

    def test_assign_links_machine(self, machine_at_center, technician, center_manager, branch_a):
        assignment = assignment_service.assign(machine_at_center.id, technician.id, center_manager, notes="Urgent")
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.status == "ASSIGNED"
        assert assignment.origin_branch_id == branch_a.id
        assert assignment.approval_status == "NONE"

        machine = _machine(assignment)
        assert machine.status == "ASSIGNED"
        assert machine.current_assignment_id == assignment.id
        assert machine.current_technician_id == technician.id

    def test_second_open_assignment_conflicts(self, started_assignment, technician, center_manager):
        with pytest.raises(ConflictError):
            assignment_service.assign(started_assignment.machine_id, technician.id, center_manager)
        rollback_session()

        assert db.session.query(ServiceAssignment).count() == 1

    def test_technician_must_work_at_center(self, machine_at_center, make_user, branch_a, center_manager):
        outsider = make_user("branch_tech", Role.BRANCH_TECH, branch_a)

        with pytest.raises(ValidationError):
            assignment_service.assign(machine_at_center.id, outsider.id, center_manager)
        rollback_session()

    def test_machine_must_be_at_center(self, make_machine, branch_a, technician, admin):
        machine = make_machine("SN-4001", branch_a)

        with pytest.raises(ValidationError):
            assignment_service.assign(machine.id, technician.id, admin)
        rollback_session()

    def test_other_branch_cannot_assign(self, machine_at_center, technician, manager_a):
        with pytest.raises(ForbiddenError):
            assignment_service.assign(machine_at_center.id, technician.id, manager_a)
        rollback_session()

    def test_start_twice_conflicts(self, started_assignment, technician):
        assert _machine(started_assignment).status == "IN_PROGRESS"

        with pytest.raises(ConflictError):
            assignment_service.start(started_assignment.id, technician)
        rollback_session()

    def test_my_assignments(self, started_assignment, technician, center_manager):
        mine = assignment_service.my_assignments(technician.id)
        assert [a.id for a in mine] == [started_assignment.id]
        assert assignment_service.my_assignments(center_manager.id) == []


# =============================================================================
# APPROVED REPAIR
# =============================================================================


class TestApprovedRepair:

    def test_request_approval_moves_machine(self, started_assignment, technician, lcd, branch_a):
        assignment = _request_approval(started_assignment, technician, lcd)

        assert assignment.status == "PENDING_APPROVAL"
        assert assignment.approval_status == "PENDING"
        assert assignment.total_cost_cents == 50000
        assert _machine(assignment).status == "PENDING_APPROVAL"

        request = db.session.get(ApprovalRequest, assignment.approval_request_id)
        assert request.status == "PENDING"
        assert request.target_branch_id == branch_a.id
        assert request.request_key == f"ASSIGNMENT:{assignment.id}"

    def test_zero_cost_cannot_be_sent(self, started_assignment, technician):
        with pytest.raises(ValidationError):
            assignment_service.request_approval(started_assignment.id, [], None, technician)
        rollback_session()

    def test_approve_then_complete_opens_one_debt(self, started_assignment, technician, lcd, manager_a, branch_a, center):
        assignment = _request_approval(started_assignment, technician, lcd)

        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.status == "APPROVED"
        assert _machine(assignment).status == "REPAIR_APPROVED"
        assert db.session.query(BranchDebt).count() == 0

        assignment_service.complete(assignment.id, "REPAIRED", "Replaced LCD", technician)
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.status == "COMPLETED"
        machine = _machine(assignment)
        assert machine.status == "READY_FOR_RETURN"
        assert machine.resolution == "REPAIRED"

        debt = db.session.query(BranchDebt).one()
        assert debt.debtor_branch_id == branch_a.id
        assert debt.creditor_branch_id == center.id
        assert debt.amount_cents == 50000
        assert debt.remaining_amount_cents == 50000
        assert debt.status == "PENDING_PAYMENT"
        assert debt.machine_serial == "SN-1001"

        assert inventory_service.get_quantity(center.id, lcd.id) == 3

    def test_request_answered_once(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)
        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()

        with pytest.raises(ConflictError):
            approval_service.respond(assignment.approval_request_id, "REJECTED", manager_a, reason="Too expensive")
        rollback_session()

        assert db.session.get(ApprovalRequest, assignment.approval_request_id).status == "APPROVED"

    def test_only_origin_branch_answers(self, started_assignment, technician, lcd, agent_b):
        assignment = _request_approval(started_assignment, technician, lcd)

        with pytest.raises(ForbiddenError):
            approval_service.respond(assignment.approval_request_id, "APPROVED", agent_b)
        rollback_session()

    def test_cost_change_after_approval_needs_new_approval(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)
        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()

        assignment_service.update_parts(assignment.id, [{"part_id": lcd.id, "quantity": 3}], technician)
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.approval_status == "NONE"
        assert assignment.status == "IN_PROGRESS"
        assert assignment.total_cost_cents == 75000
        assert _machine(assignment).status == "IN_PROGRESS"

        with pytest.raises(PreconditionFailed):
            assignment_service.complete(assignment.id, "REPAIRED", None, technician)
        rollback_session()

    def test_same_total_keeps_approval(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)
        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()

        assignment_service.update_parts(assignment.id, [{"part_id": lcd.id, "quantity": 2}], technician)
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.approval_status == "APPROVED"
        assert assignment.status == "APPROVED"

    def test_shortage_skips_deduction(self, started_assignment, technician, make_part, set_stock, center, manager_a):
        board = make_part("PRT-MB", "Main board", 30000)
        set_stock(center, board, 1)
        assignment = _request_approval(started_assignment, technician, board, quantity=2)
        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()

        assignment_service.complete(assignment.id, "REPAIRED", None, technician)
        commit_session()

        assert inventory_service.get_quantity(center.id, board.id) == 1
        actions = [log.action for log in db.session.query(ServiceAssignmentLog).order_by(ServiceAssignmentLog.id)]
        assert "PARTS_DEDUCTION_SKIPPED" in actions
        assert db.session.query(BranchDebt).one().amount_cents == 60000

    def test_parts_frozen_while_awaiting_approval(self, started_assignment, technician, lcd, manager_a, branch_a):
        assignment = _request_approval(started_assignment, technician, lcd)

        with pytest.raises(ConflictError):
            assignment_service.update_parts(assignment.id, [{"part_id": lcd.id, "quantity": 4}], technician)
        rollback_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.total_cost_cents == 50000
        assert assignment.status == "PENDING_APPROVAL"

        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()
        assignment_service.complete(assignment.id, "REPAIRED", None, technician)
        commit_session()

        debt = db.session.query(BranchDebt).one()
        assert debt.amount_cents == 50000
        assert debt.debtor_branch_id == branch_a.id

    def test_complete_refuses_total_that_differs_from_approval(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)
        approval_service.respond(assignment.approval_request_id, "APPROVED", manager_a)
        commit_session()
        db.session.query(ServiceAssignment).filter_by(id=assignment.id).update({"total_cost_cents": 90000})
        commit_session()

        with pytest.raises(PreconditionFailed):
            assignment_service.complete(assignment.id, "REPAIRED", None, technician)
        rollback_session()

        assert db.session.query(BranchDebt).count() == 0
        assert db.session.get(ServiceAssignment, assignment.id).status == "APPROVED"


# =============================================================================
# REJECTED REPAIR
# =============================================================================


class TestRejectedRepair:

    def test_rejection_requires_reason(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)

        with pytest.raises(ValidationError):
            approval_service.respond(assignment.approval_request_id, "REJECTED", manager_a)

    def test_rejected_repair_never_opens_debt(self, started_assignment, technician, lcd, manager_a, center):
        assignment = _request_approval(started_assignment, technician, lcd)

        approval_service.respond(assignment.approval_request_id, "REJECTED", manager_a, reason="Too expensive")
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.status == "REJECTED"
        assert assignment.rejection_reason == "Too expensive"
        assert _machine(assignment).status == "REPAIR_REJECTED"

        with pytest.raises(PreconditionFailed):
            assignment_service.complete(assignment.id, "REJECTED_REPAIR", None, technician)
        rollback_session()

        # Drop the parts, then hand the machine back unrepaired
        assignment_service.update_parts(assignment.id, [], technician)
        commit_session()
        assignment_service.complete(assignment.id, "REJECTED_REPAIR", "Returned as is", technician)
        commit_session()

        assignment = db.session.get(ServiceAssignment, assignment.id)
        assert assignment.status == "COMPLETED"
        assert _machine(assignment).status == "READY_FOR_RETURN"
        assert _machine(assignment).resolution == "REJECTED_REPAIR"
        assert db.session.query(BranchDebt).count() == 0
        assert inventory_service.get_quantity(center.id, lcd.id) == 5

    def test_rejected_repair_can_be_requested_again(self, started_assignment, technician, lcd, manager_a):
        assignment = _request_approval(started_assignment, technician, lcd)
        approval_service.respond(assignment.approval_request_id, "REJECTED", manager_a, reason="Too expensive")
        commit_session()

        assignment = _request_approval(assignment, technician, lcd, quantity=1)

        assert assignment.status == "PENDING_APPROVAL"
        assert assignment.total_cost_cents == 25000
        assert _machine(assignment).status == "PENDING_APPROVAL"
        assert db.session.query(ApprovalRequest).count() == 2


# =============================================================================
# BATCH APPROVALS
# =============================================================================


class TestBatchApprovals:

    def test_batch_approval_never_opens_debt(self, machine_at_center, center_manager, manager_a, branch_a):
        request = approval_service.create_batch_request(
            {"serial_number": "SN-1001", "cost": "120.50", "notes": "Keypad"}, center_manager
        )
        commit_session()

        request = db.session.get(ApprovalRequest, request.id)
        assert request.is_batch
        assert request.request_key == "BATCH:SN-1001"
        assert request.proposed_cost_cents == 12050
        assert request.target_branch_id == branch_a.id

        approval_service.respond(request.id, "APPROVED", manager_a)
        commit_session()

        assert db.session.get(ApprovalRequest, request.id).status == "APPROVED"
        assert db.session.query(BranchDebt).count() == 0
        # No legal edge from RECEIVED_AT_CENTER, so the machine stays put
        assert db.session.get(Machine, machine_at_center.id).status == "RECEIVED_AT_CENTER"

    def test_batch_duplicate_pending_conflicts(self, machine_at_center, center_manager):
        approval_service.create_batch_request({"serial_number": "SN-1001", "cost": 50}, center_manager)
        commit_session()

        with pytest.raises(ConflictError):
            approval_service.create_batch_request({"serial_number": "SN-1001", "cost": 75}, center_manager)
        rollback_session()

    def test_batch_refused_with_open_assignment(self, started_assignment, center_manager):
        with pytest.raises(ConflictError):
            approval_service.create_batch_request({"serial_number": "SN-1001", "cost": 50}, center_manager)
        rollback_session()

    def test_pending_count(self, machine_at_center, center_manager, manager_a, agent_b):
        approval_service.create_batch_request({"serial_number": "SN-1001", "cost": 50}, center_manager)
        commit_session()

        assert approval_service.pending_count(None, manager_a) == 1
        assert approval_service.pending_count(None, agent_b) == 0

    def test_batch_by_machine_id_moves_inspected_machine(self, machine_at_center, center_manager, manager_a):
        machine = db.session.get(Machine, machine_at_center.id)
        msm.apply_transition(machine, msm.UNDER_INSPECTION, msm.TransitionContext.for_actor(center_manager))
        commit_session()

        request = approval_service.create_batch_request(
            {"machine_id": machine_at_center.id, "cost": 80}, center_manager
        )
        commit_session()

        assert request.serial_number == "SN-1001"
        assert db.session.get(Machine, machine_at_center.id).status == "PENDING_APPROVAL"

        approval_service.respond(request.id, "APPROVED", manager_a)
        commit_session()

        assert db.session.get(Machine, machine_at_center.id).status == "REPAIR_APPROVED"

    def test_batch_id_and_serial_must_agree(self, machine_at_center, make_machine, center, center_manager):
        other = make_machine("SN-1999", center)

        with pytest.raises(ValidationError):
            approval_service.create_batch_request(
                {"machine_id": other.id, "serial_number": "SN-1001", "cost": 50}, center_manager
            )
        rollback_session()

    def test_batch_answer_conflicts_when_machine_moved_on(self, machine_at_center, center_manager, manager_a):
        machine = db.session.get(Machine, machine_at_center.id)
        msm.apply_transition(machine, msm.UNDER_INSPECTION, msm.TransitionContext.for_actor(center_manager))
        commit_session()
        request = approval_service.create_batch_request({"serial_number": "SN-1001", "cost": 50}, center_manager)
        commit_session()

        # Decided elsewhere before the branch answered
        machine = db.session.get(Machine, machine_at_center.id)
        msm.apply_transition(machine, msm.REPAIR_REJECTED, msm.TransitionContext.for_actor(center_manager))
        commit_session()

        with pytest.raises(ConflictError):
            approval_service.respond(request.id, "APPROVED", manager_a)
        rollback_session()

        assert db.session.get(ApprovalRequest, request.id).status == "PENDING"
        assert db.session.get(Machine, machine_at_center.id).status == "REPAIR_REJECTED"
