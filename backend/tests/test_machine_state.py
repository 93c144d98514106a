"""
Machine lifecycle tests.

Verifies:
- Only edges of the lifecycle graph are accepted
- READY_FOR_RETURN requires a resolution
- Assignment links restrict machine moves
- Lost compare-and-swap surfaces as a conflict
- Every recorded movement is a legal edge
"""

import pytest
from sqlalchemy import update

from posfleet.errors import ConflictError, ForbiddenError, TransitionError, ValidationError
from posfleet.extensions import db
from posfleet.models import Machine, MachineMovementLog
from posfleet.services import machine_state_service as msm
from posfleet.services.concurrency import commit_session, rollback_session


def _context(actor, **kwargs):
    return msm.TransitionContext.for_actor(actor, **kwargs)


# =============================================================================
# GRAPH
# =============================================================================


class TestTransitionGraph:

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("NEW", "IN_TRANSIT"),
            ("IN_TRANSIT", "RECEIVED_AT_CENTER"),
            ("RECEIVED_AT_CENTER", "ASSIGNED"),
            ("IN_PROGRESS", "PENDING_APPROVAL"),
            ("PENDING_APPROVAL", "REPAIR_REJECTED"),
            ("REPAIR_APPROVED", "READY_FOR_RETURN"),
            ("READY_FOR_RETURN", "RETURNING"),
            ("RETURNING", "STANDBY"),
        ],
    )
    def test_legal_edges(self, from_status, to_status):
        assert msm.can_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("NEW", "READY_FOR_RETURN"),
            ("RECEIVED_AT_CENTER", "REPAIR_APPROVED"),
            ("PENDING_APPROVAL", "IN_PROGRESS"),
            ("SOLD", "STANDBY"),
            ("READY_FOR_RETURN", "STANDBY"),
        ],
    )
    def test_illegal_edges(self, from_status, to_status):
        assert not msm.can_transition(from_status, to_status)

    def test_awaiting_approval_is_an_alias(self):
        assert msm.normalize_status("awaiting_approval") == msm.PENDING_APPROVAL
        assert msm.can_transition("IN_PROGRESS", "AWAITING_APPROVAL")

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            msm.normalize_status("BROKEN")
        with pytest.raises(ValidationError):
            msm.normalize_status(None)


# =============================================================================
# APPLYING TRANSITIONS
# =============================================================================


class TestApplyTransition:

    def test_illegal_edge_leaves_machine_untouched(self, make_machine, branch_a, admin):
        machine = make_machine("SN-2001", branch_a)

        with pytest.raises(TransitionError) as exc_info:
            msm.apply_transition(machine, "READY_FOR_RETURN", _context(admin))
        rollback_session()

        assert exc_info.value.details == {"from": "NEW", "to": "READY_FOR_RETURN"}
        assert db.session.get(Machine, machine.id).status == "NEW"
        assert db.session.query(MachineMovementLog).count() == 0

    def test_transition_records_movement(self, make_machine, branch_a, admin):
        machine = make_machine("SN-2002", branch_a)

        msm.apply_transition(machine, "STANDBY", _context(admin, notes="Shelved"))
        commit_session()

        machine = db.session.get(Machine, machine.id)
        assert machine.status == "STANDBY"
        log = db.session.query(MachineMovementLog).one()
        assert (log.from_status, log.to_status) == ("NEW", "STANDBY")
        assert log.performed_by_id == admin.id
        assert log.details == {"notes": "Shelved"}

    def test_ready_for_return_requires_resolution(self, make_machine, center, admin):
        machine = make_machine("SN-2003", center, status="UNDER_INSPECTION")

        with pytest.raises(ValidationError):
            msm.apply_transition(machine, "READY_FOR_RETURN", _context(admin))
        rollback_session()

        machine = db.session.get(Machine, machine.id)
        msm.apply_transition(machine, "READY_FOR_RETURN", _context(admin, payload={"resolution": "repaired"}))
        commit_session()

        machine = db.session.get(Machine, machine.id)
        assert machine.status == "READY_FOR_RETURN"
        assert machine.resolution == "REPAIRED"

    def test_standby_clears_assignment_links(self, make_machine, branch_a, technician, admin):
        machine = make_machine(
            "SN-2004", branch_a, status="RETURNING",
            current_assignment_id=999, current_technician_id=technician.id,
        )

        msm.apply_transition(machine, "STANDBY", _context(admin))
        commit_session()

        machine = db.session.get(Machine, machine.id)
        assert machine.current_assignment_id is None
        assert machine.current_technician_id is None

    def test_open_assignment_blocks_unrelated_status(self, started_assignment, admin):
        machine = db.session.get(Machine, started_assignment.machine_id)
        assert machine.status == "IN_PROGRESS"

        # Legal edge, but the IN_PROGRESS assignment has not requested approval
        with pytest.raises(TransitionError):
            msm.apply_transition(machine, "PENDING_APPROVAL", _context(admin))
        rollback_session()

        assert db.session.get(Machine, machine.id).status == "IN_PROGRESS"

    def test_stale_status_conflicts(self, make_machine, branch_a, admin):
        machine = make_machine("SN-2005", branch_a)
        assert machine.status == "NEW"

        # Another writer moves the row; our in-memory copy still says NEW
        db.session.execute(
            update(Machine)
            .where(Machine.id == machine.id)
            .values(status="STANDBY")
            .execution_options(synchronize_session=False)
        )
        assert machine.status == "NEW"

        with pytest.raises(ConflictError):
            msm.apply_transition(machine, "IN_TRANSIT", _context(admin))
        rollback_session()

    def test_transition_denied_outside_branch(self, make_machine, branch_a, agent_b):
        machine = make_machine("SN-2006", branch_a)

        with pytest.raises(ForbiddenError):
            msm.transition(machine.id, "STANDBY", _context(agent_b), actor=agent_b)
        rollback_session()

        assert db.session.get(Machine, machine.id).status == "NEW"

    @pytest.mark.parametrize("target", ["PENDING_APPROVAL", "AWAITING_APPROVAL", "REPAIR_APPROVED", "REPAIR_REJECTED"])
    def test_manual_transition_cannot_decide_approval(self, make_machine, center, admin, target):
        machine = make_machine("SN-2010", center, status="UNDER_INSPECTION")

        with pytest.raises(TransitionError):
            msm.transition(machine.id, target, _context(admin), actor=admin)
        rollback_session()

        assert db.session.get(Machine, machine.id).status == "UNDER_INSPECTION"
        assert db.session.query(MachineMovementLog).count() == 0

    def test_manual_transition_cannot_leave_pending_approval(self, make_machine, center, admin):
        machine = make_machine("SN-2011", center, status="PENDING_APPROVAL")

        with pytest.raises(TransitionError):
            msm.transition(machine.id, "REPAIR_APPROVED", _context(admin), actor=admin)
        rollback_session()

        assert db.session.get(Machine, machine.id).status == "PENDING_APPROVAL"


# =============================================================================
# HISTORY AND BOARD
# =============================================================================


class TestHistoryAndBoard:

    def test_recorded_movements_are_legal_edges(self, started_assignment):
        logs = db.session.query(MachineMovementLog).order_by(MachineMovementLog.id).all()

        assert [(log.from_status, log.to_status) for log in logs] == [
            ("NEW", "IN_TRANSIT"),
            ("IN_TRANSIT", "RECEIVED_AT_CENTER"),
            ("RECEIVED_AT_CENTER", "ASSIGNED"),
            ("ASSIGNED", "IN_PROGRESS"),
        ]
        for log in logs:
            assert msm.can_transition(log.from_status, log.to_status)

    def test_history_visible_to_origin_branch(self, machine_at_center, manager_a, agent_b):
        history = msm.history(machine_at_center.id, manager_a)
        assert [log.to_status for log in history] == ["IN_TRANSIT", "RECEIVED_AT_CENTER"]

        with pytest.raises(ForbiddenError):
            msm.history(machine_at_center.id, agent_b)

    def test_kanban_groups_center_machines(self, client, auth_headers, machine_at_center, center_manager, make_machine, branch_a):
        make_machine("SN-2007", branch_a)

        resp = client.get("/api/machine-workflow/kanban", headers=auth_headers(center_manager))

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total"] == 1
        assert body["counts"]["RECEIVED_AT_CENTER"] == 1
        assert body["columns"]["RECEIVED_AT_CENTER"][0]["serial_number"] == "SN-1001"

    def test_manual_transition_endpoint(self, client, auth_headers, machine_at_center, center_manager):
        headers = auth_headers(center_manager)

        resp = client.post(
            f"/api/machine-workflow/{machine_at_center.id}/transition",
            json={"status": "UNDER_INSPECTION", "notes": "Screen flicker"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "UNDER_INSPECTION"

        resp = client.post(
            f"/api/machine-workflow/{machine_at_center.id}/transition",
            json={"status": "SOLD"},
            headers=headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INVALID_TRANSITION"

    def test_manual_transition_requires_permission(self, client, auth_headers, make_machine, branch_a, agent_a):
        machine = make_machine("SN-2008", branch_a)

        resp = client.post(
            f"/api/machine-workflow/{machine.id}/transition",
            json={"status": "STANDBY"},
            headers=auth_headers(agent_a),
        )

        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "TRANSITION_MACHINE"

    def test_manual_transition_endpoint_refuses_approval_status(
        self, client, auth_headers, machine_at_center, center_manager
    ):
        headers = auth_headers(center_manager)
        client.post(
            f"/api/machine-workflow/{machine_at_center.id}/transition",
            json={"status": "UNDER_INSPECTION"},
            headers=headers,
        )

        resp = client.post(
            f"/api/machine-workflow/{machine_at_center.id}/transition",
            json={"status": "REPAIR_APPROVED"},
            headers=headers,
        )

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INVALID_TRANSITION"
