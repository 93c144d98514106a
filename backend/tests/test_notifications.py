"""
Notification delivery tests.

Verifies:
- Notifications are delivered only after the business transaction commits
- Rolled back work never notifies anybody
- A failing sink never undoes committed state
- Inbox visibility (own user + own branch broadcasts)
"""

import logging

import pytest

from posfleet.errors import NotFoundError
from posfleet.extensions import db
from posfleet.models import Notification, TransferOrder
from posfleet.services import assignment_service, notification_service, transfer_service
from posfleet.services.concurrency import commit_session, rollback_session


def _ship(actor, to_branch, serial):
    return transfer_service.create_order(
        {"type": "MACHINE", "to_branch_id": to_branch.id, "items": [serial]}, actor
    )


# =============================================================================
# AFTER-COMMIT DELIVERY
# =============================================================================


class TestAfterCommitDelivery:

    def test_queued_until_commit(self, make_machine, branch_a, branch_b, manager_a):
        make_machine("SN-5001", branch_a)

        _ship(manager_a, branch_b, "SN-5001")

        queued = notification_service.pending_notifications()
        assert [n["type"] for n in queued] == ["TRANSFER_CREATED"]
        assert db.session.query(Notification).count() == 0

        commit_session()

        assert notification_service.pending_notifications() == []
        delivered = db.session.query(Notification).one()
        assert delivered.type == "TRANSFER_CREATED"
        assert delivered.branch_id == branch_b.id
        assert delivered.user_id is None

    def test_rollback_discards_queue(self, make_machine, branch_a, branch_b, manager_a):
        make_machine("SN-5002", branch_a)

        _ship(manager_a, branch_b, "SN-5002")
        rollback_session()

        assert notification_service.pending_notifications() == []
        assert db.session.query(Notification).count() == 0
        assert db.session.query(TransferOrder).count() == 0

    def test_failing_sink_keeps_business_state(self, app, make_machine, branch_a, branch_b, manager_a, caplog):
        def broken_sink(notification):
            raise RuntimeError("mail server down")

        notification_service.init_app(app, sink=broken_sink)
        make_machine("SN-5003", branch_a)

        order = _ship(manager_a, branch_b, "SN-5003")
        with caplog.at_level(logging.WARNING):
            commit_session()

        assert db.session.get(TransferOrder, order.id).status == "PENDING"
        assert db.session.query(Notification).count() == 0
        assert "Failed to deliver TRANSFER_CREATED notification" in caplog.text

    def test_custom_sink_receives_payload(self, app, make_machine, branch_a, branch_b, manager_a):
        delivered = []
        notification_service.init_app(app, sink=delivered.append)
        make_machine("SN-5004", branch_a)

        order = _ship(manager_a, branch_b, "SN-5004")
        commit_session()

        assert len(delivered) == 1
        assert delivered[0]["data"] == {"order_id": order.id}
        assert delivered[0]["link"] == f"/transfer-orders/{order.id}"


# =============================================================================
# INBOX
# =============================================================================


class TestInbox:

    def test_branch_broadcast_visibility(self, make_machine, branch_a, branch_b, manager_a, agent_b):
        make_machine("SN-5101", branch_a)
        _ship(manager_a, branch_b, "SN-5101")
        commit_session()

        inbox = notification_service.list_notifications(agent_b)
        assert [n.type for n in inbox] == ["TRANSFER_CREATED"]
        assert notification_service.list_notifications(manager_a) == []

        notification_service.mark_read(inbox[0].id, agent_b)
        commit_session()
        assert notification_service.list_notifications(agent_b, unread_only=True) == []

        with pytest.raises(NotFoundError):
            notification_service.mark_read(inbox[0].id, manager_a)

    def test_technician_gets_personal_notification(self, machine_at_center, technician, center_manager):
        assignment_service.assign(machine_at_center.id, technician.id, center_manager)
        commit_session()

        personal = [n for n in notification_service.list_notifications(technician) if n.user_id == technician.id]
        assert [n.type for n in personal] == ["ASSIGNMENT_CREATED"]
        assert all(n.user_id != technician.id for n in notification_service.list_notifications(center_manager))

    def test_inbox_endpoint(self, client, auth_headers, make_machine, branch_a, branch_b, manager_a, agent_b):
        make_machine("SN-5102", branch_a)
        _ship(manager_a, branch_b, "SN-5102")
        commit_session()
        headers = auth_headers(agent_b)

        resp = client.get("/api/notifications", headers=headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["unread"] == 1
        notification_id = body["notifications"][0]["id"]

        resp = client.put(f"/api/notifications/{notification_id}/read", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["is_read"] is True

        resp = client.get("/api/notifications?unread=true", headers=headers)
        assert resp.get_json()["notifications"] == []
