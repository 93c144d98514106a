"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Missing permissions return 403 naming the permission
- Workflow errors map to status codes with a machine-readable code
- The full repair flow works end to end over HTTP
"""

import pytest

from posfleet.extensions import db
from posfleet.models import BranchDebt, Machine, TransferOrder
from posfleet.services import permission_service, settlement_service
from posfleet.services.concurrency import commit_session

PASSWORD = "Password123!"


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/transfer-orders"),
            ("POST", "/api/transfer-orders"),
            ("GET", "/api/transfer-orders/pending-serials"),
            ("POST", "/api/transfer-orders/1/receive"),
            ("GET", "/api/machine-workflow/kanban"),
            ("POST", "/api/machine-workflow/1/transition"),
            ("GET", "/api/service-assignments"),
            ("GET", "/api/service-assignments/my-assignments"),
            ("PUT", "/api/service-assignments/1/complete"),
            ("GET", "/api/maintenance-approvals"),
            ("PUT", "/api/maintenance-approvals/1/approve"),
            ("GET", "/api/pending-payments"),
            ("PUT", "/api/pending-payments/1/pay"),
            ("GET", "/api/pending-payments/1/installments"),
            ("GET", "/api/maintenance-center/ready-for-return"),
            ("POST", "/api/maintenance-center/return-package"),
            ("GET", "/api/notifications"),
            ("GET", "/api/admin/entities"),
            ("GET", "/api/admin/permissions"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# AUTH AND SYSTEM
# =============================================================================


class TestAuthAndSystem:

    def test_login_me_logout(self, client, manager_a):
        resp = client.post("/api/auth/login", json={"username": "manager_a", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert "password_hash" not in body["user"]
        assert "PAY_DEBTS" in body["permissions"]
        headers = {"Authorization": f"Bearer {body['token']}"}

        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["username"] == "manager_a"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_login_failures(self, client, manager_a):
        resp = client.post("/api/auth/login", json={"username": "manager_a", "password": "wrong-password"})
        assert resp.status_code == 401

        resp = client.post("/api/auth/login", json={"username": "manager_a"})
        assert resp.status_code == 400

    def test_inactive_user_token_rejected(self, client, auth_headers, manager_a):
        headers = auth_headers(manager_a)
        manager_a.is_active = False
        db.session.commit()

        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_version(self, client, db_session):
        resp = client.get("/api/version")
        assert resp.status_code == 200
        assert resp.get_json()["api_version"]


# =============================================================================
# PERMISSIONS - 403
# =============================================================================


class TestPermissionDenied:

    def test_agent_cannot_answer_approvals(self, client, auth_headers, agent_a):
        resp = client.put("/api/maintenance-approvals/1/approve", headers=auth_headers(agent_a))

        assert resp.status_code == 403
        body = resp.get_json()
        assert body["error"] == "Permission denied"
        assert body["required_permission"] == "RESPOND_APPROVAL"

    def test_agent_cannot_pay(self, client, auth_headers, agent_a):
        resp = client.put("/api/pending-payments/1/pay", json={"receipt_number": "R1"}, headers=auth_headers(agent_a))
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "PAY_DEBTS"

    def test_branch_staff_cannot_inspect_entities(self, client, auth_headers, manager_a):
        resp = client.get("/api/admin/entities", headers=auth_headers(manager_a))
        assert resp.status_code == 403

    def test_granted_override_opens_endpoint(self, client, auth_headers, admin, agent_a, make_machine, branch_a):
        machine = make_machine("SN-6001", branch_a)
        agent_headers = auth_headers(agent_a)

        resp = client.put(
            "/api/admin/roles/CS_AGENT/permissions/TRANSITION_MACHINE",
            json={"allowed": True},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert permission_service.user_has_permission(agent_a, "TRANSITION_MACHINE")

        resp = client.post(
            f"/api/machine-workflow/{machine.id}/transition",
            json={"status": "STANDBY"},
            headers=agent_headers,
        )
        assert resp.status_code == 200

        resp = client.delete(
            "/api/admin/roles/CS_AGENT/permissions/TRANSITION_MACHINE",
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert not permission_service.user_has_permission(agent_a, "TRANSITION_MACHINE")


# =============================================================================
# TRANSFER ORDERS OVER HTTP
# =============================================================================


class TestTransferOrderEndpoints:

    def test_create_receive_and_conflict(self, client, auth_headers, make_machine, branch_a, center, manager_a, center_manager):
        make_machine("SN-6101", branch_a)
        sender = auth_headers(manager_a)
        receiver = auth_headers(center_manager)

        resp = client.post(
            "/api/transfer-orders",
            json={"type": "MACHINE", "to_branch_id": center.id, "items": ["SN-6101"]},
            headers=sender,
        )
        assert resp.status_code == 201
        order = resp.get_json()
        assert order["status"] == "PENDING"
        assert order["items"][0]["previous_status"] == "NEW"

        resp = client.get("/api/transfer-orders/pending-serials", headers=sender)
        assert resp.get_json()["serials"] == ["SN-6101"]

        resp = client.get("/api/transfer-orders/pending", headers=receiver)
        assert resp.get_json()["count"] == 1

        resp = client.post(f"/api/transfer-orders/{order['id']}/receive", json={}, headers=receiver)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "COMPLETED"

        resp = client.post(f"/api/transfer-orders/{order['id']}/receive", json={}, headers=receiver)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "CONFLICT"

        db.session.expire_all()
        machine = db.session.query(Machine).filter_by(serial_number="SN-6101").one()
        assert machine.status == "RECEIVED_AT_CENTER"

    def test_validation_error_body(self, client, auth_headers, branch_a, center, manager_a):
        resp = client.post(
            "/api/transfer-orders",
            json={"type": "MACHINE", "to_branch_id": center.id, "items": []},
            headers=auth_headers(manager_a),
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_reject_requires_reason(self, client, auth_headers, make_machine, branch_a, branch_b, manager_a, agent_b):
        make_machine("SN-6102", branch_a)
        resp = client.post(
            "/api/transfer-orders",
            json={"type": "MACHINE", "to_branch_id": branch_b.id, "items": ["SN-6102"]},
            headers=auth_headers(manager_a),
        )
        order_id = resp.get_json()["id"]
        receiver = auth_headers(agent_b)

        resp = client.post(f"/api/transfer-orders/{order_id}/reject", json={}, headers=receiver)
        assert resp.status_code == 400

        resp = client.post(f"/api/transfer-orders/{order_id}/reject", json={"reason": "Not ordered"}, headers=receiver)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "REJECTED"

        db.session.expire_all()
        assert db.session.get(TransferOrder, order_id).status == "REJECTED"

    def test_foreign_order_forbidden(self, client, auth_headers, make_machine, branch_a, center, manager_a, agent_b):
        make_machine("SN-6103", branch_a)
        resp = client.post(
            "/api/transfer-orders",
            json={"type": "MACHINE", "to_branch_id": center.id, "items": ["SN-6103"]},
            headers=auth_headers(manager_a),
        )
        order_id = resp.get_json()["id"]

        resp = client.get(f"/api/transfer-orders/{order_id}", headers=auth_headers(agent_b))
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"


# =============================================================================
# FULL REPAIR FLOW OVER HTTP
# =============================================================================


class TestRepairFlowEndpoints:

    def test_repair_approve_complete_and_pay(
        self, client, auth_headers, machine_at_center, technician, center_manager, manager_a,
        make_part, set_stock, center,
    ):
        part = make_part("PRT-KEY", "Keypad", 25000)
        set_stock(center, part, 4)
        manager_headers = auth_headers(center_manager)
        tech_headers = auth_headers(technician)
        branch_headers = auth_headers(manager_a)

        resp = client.post(
            "/api/service-assignments",
            json={"machine_id": machine_at_center.id, "technician_id": technician.id},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assignment_id = resp.get_json()["id"]

        resp = client.get("/api/service-assignments/my-assignments", headers=tech_headers)
        assert [a["id"] for a in resp.get_json()["assignments"]] == [assignment_id]

        assert client.put(f"/api/service-assignments/{assignment_id}/start", headers=tech_headers).status_code == 200

        resp = client.post(
            f"/api/service-assignments/{assignment_id}/request-approval",
            json={"parts": [{"part_id": part.id, "quantity": 2}], "notes": "Keys stuck"},
            headers=tech_headers,
        )
        assert resp.status_code == 200
        request_id = resp.get_json()["approval_request_id"]
        assert resp.get_json()["total_cost_cents"] == 50000

        resp = client.get("/api/maintenance-approvals/pending-count", headers=branch_headers)
        assert resp.get_json()["count"] == 1

        resp = client.put(f"/api/maintenance-approvals/{request_id}/approve", json={}, headers=branch_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "APPROVED"

        resp = client.put(
            f"/api/service-assignments/{assignment_id}/complete",
            json={"resolution": "REPAIRED", "action_taken": "Replaced keypad"},
            headers=tech_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "COMPLETED"

        resp = client.get("/api/pending-payments", headers=branch_headers)
        debts = resp.get_json()["debts"]
        assert len(debts) == 1
        assert debts[0]["amount_cents"] == 50000

        resp = client.put(
            f"/api/pending-payments/{debts[0]['id']}/pay",
            json={"receipt_number": "RC-9001", "payment_place": "Branch A"},
            headers=branch_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "PAID"

        resp = client.put(
            f"/api/pending-payments/{debts[0]['id']}/pay",
            json={"receipt_number": "RC-9002"},
            headers=branch_headers,
        )
        assert resp.status_code == 409

        resp = client.get("/api/pending-payments/summary", headers=branch_headers)
        assert resp.get_json()["total_amount_cents"] == 0

        db.session.expire_all()
        assert db.session.query(BranchDebt).one().remaining_amount_cents == 0

    def test_batch_request_by_machine_id(self, client, auth_headers, machine_at_center, center_manager, branch_a):
        resp = client.post(
            "/api/maintenance-approvals",
            json={"machine_id": machine_at_center.id, "cost": 45.5, "notes": "Battery"},
            headers=auth_headers(center_manager),
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["serial_number"] == "SN-1001"
        assert body["proposed_cost_cents"] == 4550
        assert body["target_branch_id"] == branch_a.id

    def test_batch_request_unknown_machine_is_404(self, client, auth_headers, center_manager):
        resp = client.post(
            "/api/maintenance-approvals",
            json={"machine_id": 9999, "cost": 10},
            headers=auth_headers(center_manager),
        )

        assert resp.status_code == 404

    def test_installment_plan(self, client, auth_headers, branch_a, center, manager_a, agent_b):
        debt = settlement_service.open_debt(
            debtor_branch_id=branch_a.id, creditor_branch_id=center.id, amount_cents=10001, machine_serial="SN-1001"
        )
        commit_session()

        resp = client.get(f"/api/pending-payments/{debt.id}/installments?count=3", headers=auth_headers(manager_a))

        assert resp.status_code == 200
        body = resp.get_json()
        assert [i["amount_cents"] for i in body["installments"]] == [3333, 3333, 3335]
        assert sum(i["amount_cents"] for i in body["installments"]) == body["remaining_amount_cents"]
        assert body["installments"][2]["amount"] == "33.35"

        resp = client.get(f"/api/pending-payments/{debt.id}/installments?count=0", headers=auth_headers(manager_a))
        assert resp.status_code == 400

        resp = client.get(f"/api/pending-payments/{debt.id}/installments?count=2", headers=auth_headers(agent_b))
        assert resp.status_code == 403



# =============================================================================
# ADMIN INSPECTION
# =============================================================================


class TestAdminInspection:

    def test_entity_listing(self, client, auth_headers, admin, make_machine, branch_a):
        make_machine("SN-6201", branch_a)
        make_machine("SN-6202", branch_a)
        headers = auth_headers(admin)

        resp = client.get("/api/admin/entities", headers=headers)
        assert "machines" in resp.get_json()["kinds"]

        resp = client.get("/api/admin/entities/machines?limit=1", headers=headers)
        body = resp.get_json()
        assert body["total"] == 2
        assert [m["serial_number"] for m in body["items"]] == ["SN-6202"]

        resp = client.get("/api/admin/entities/users", headers=headers)
        assert all("password_hash" not in u for u in resp.get_json()["items"])

    def test_unknown_kind_is_404(self, client, auth_headers, admin):
        resp = client.get("/api/admin/entities/rockets", headers=auth_headers(admin))
        assert resp.status_code == 404
