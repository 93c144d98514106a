"""Initial fleet maintenance schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False, server_default=True):
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if server_default else None,
    )


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("branch_type", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_code", "branches", ["code"], unique=True)
    op.create_index("ix_branches_branch_type", "branches", ["branch_type"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        _ts("last_login_at", nullable=True, server_default=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_branch_id", "users", ["branch_id"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        _ts("created_at"),
        _ts("expires_at", server_default=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        _ts("revoked_at", nullable=True, server_default=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "role_permission_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("permission_code", sa.String(length=64), nullable=False),
        sa.Column("allowed", sa.Boolean(), nullable=False),
        _ts("updated_at"),
        sa.UniqueConstraint("role", "permission_code", name="uq_role_permission_override"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_role_permission_overrides_role", "role_permission_overrides", ["role"])

    op.create_table(
        "machines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("manufacturer", sa.String(length=64), nullable=True),
        sa.Column("model", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("origin_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("current_assignment_id", sa.Integer(), nullable=True),
        sa.Column("current_technician_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolution", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("problem_description", sa.Text(), nullable=True),
        sa.Column("estimated_cost_cents", sa.Integer(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_machines_serial_number", "machines", ["serial_number"], unique=True)
    op.create_index("ix_machines_status", "machines", ["status"])
    op.create_index("ix_machines_branch_id", "machines", ["branch_id"])
    op.create_index("ix_machines_origin_branch_id", "machines", ["origin_branch_id"])
    op.create_index("ix_machines_current_technician_id", "machines", ["current_technician_id"])
    op.create_index("ix_machines_branch_status", "machines", ["branch_id", "status"])

    op.create_table(
        "machine_movement_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=True),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("performed_by", sa.String(length=128), nullable=True),
        sa.Column("performed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        _ts("occurred_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_machine_movement_logs_machine_id", "machine_movement_logs", ["machine_id"])
    op.create_index("ix_machine_movement_logs_serial_number", "machine_movement_logs", ["serial_number"])
    op.create_index("ix_machine_movement_logs_branch_id", "machine_movement_logs", ["branch_id"])
    op.create_index("ix_machine_movement_machine_occurred", "machine_movement_logs", ["machine_id", "occurred_at"])

    op.create_table(
        "sim_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("sim_type", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        _ts("created_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sim_cards_serial_number", "sim_cards", ["serial_number"], unique=True)
    op.create_index("ix_sim_cards_status", "sim_cards", ["status"])
    op.create_index("ix_sim_cards_branch_id", "sim_cards", ["branch_id"])

    op.create_table(
        "spare_parts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("part_code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("default_cost_cents", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_spare_parts_part_code", "spare_parts", ["part_code"], unique=True)

    op.create_table(
        "branch_part_stock",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("part_id", sa.Integer(), sa.ForeignKey("spare_parts.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _ts("updated_at"),
        sa.UniqueConstraint("branch_id", "part_id", name="uq_branch_part_stock"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branch_part_stock_branch_id", "branch_part_stock", ["branch_id"])
    op.create_index("ix_branch_part_stock_part_id", "branch_part_stock", ["part_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("part_id", sa.Integer(), sa.ForeignKey("spare_parts.id"), nullable=False),
        sa.Column("movement_type", sa.String(length=32), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("source_type", sa.String(length=32), nullable=True),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("performed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("occurred_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_branch_id", "stock_movements", ["branch_id"])
    op.create_index("ix_stock_movements_part_id", "stock_movements", ["part_id"])
    op.create_index("ix_stock_movements_branch_part", "stock_movements", ["branch_id", "part_id"])

    op.create_table(
        "transfer_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=False),
        sa.Column("order_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("from_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("to_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_by_name", sa.String(length=128), nullable=True),
        _ts("created_at"),
        sa.Column("received_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("received_by_name", sa.String(length=128), nullable=True),
        _ts("received_at", nullable=True, server_default=False),
        _ts("rejected_at", nullable=True, server_default=False),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("cancelled_at", nullable=True, server_default=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfer_orders_order_number", "transfer_orders", ["order_number"], unique=True)
    op.create_index("ix_transfer_orders_order_type", "transfer_orders", ["order_type"])
    op.create_index("ix_transfer_orders_status", "transfer_orders", ["status"])
    op.create_index("ix_transfer_orders_created_by_user_id", "transfer_orders", ["created_by_user_id"])
    op.create_index("ix_transfer_orders_created_at", "transfer_orders", ["created_at"])
    op.create_index("ix_transfer_orders_to_status", "transfer_orders", ["to_branch_id", "status"])
    op.create_index("ix_transfer_orders_from_status", "transfer_orders", ["from_branch_id", "status"])

    op.create_table(
        "transfer_order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("transfer_orders.id"), nullable=False),
        sa.Column("serial_number", sa.String(length=64), nullable=True),
        sa.Column("model", sa.String(length=64), nullable=True),
        sa.Column("manufacturer", sa.String(length=64), nullable=True),
        sa.Column("part_id", sa.Integer(), sa.ForeignKey("spare_parts.id"), nullable=True),
        sa.Column("part_code", sa.String(length=64), nullable=True),
        sa.Column("part_name", sa.String(length=128), nullable=True),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_status", sa.String(length=32), nullable=True),
        sa.Column("item_status", sa.String(length=16), nullable=False),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        _ts("resolved_at", nullable=True, server_default=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfer_order_items_order_id", "transfer_order_items", ["order_id"])
    op.create_index(
        "ix_transfer_order_items_serial_status", "transfer_order_items", ["serial_number", "item_status"]
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("period", sa.String(length=8), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.UniqueConstraint("prefix", "period", name="uq_document_sequences_prefix_period"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "service_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("technician_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("technician_name", sa.String(length=128), nullable=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("origin_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("used_parts", sa.JSON(), nullable=True),
        sa.Column("total_cost_cents", sa.Integer(), nullable=False),
        sa.Column("approval_status", sa.String(length=16), nullable=False),
        sa.Column("approval_request_id", sa.Integer(), nullable=True),
        sa.Column("resolution", sa.String(length=32), nullable=True),
        sa.Column("action_taken", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("assigned_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("assigned_at"),
        _ts("started_at", nullable=True, server_default=False),
        _ts("completed_at", nullable=True, server_default=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_assignments_machine_id", "service_assignments", ["machine_id"])
    op.create_index("ix_service_assignments_serial_number", "service_assignments", ["serial_number"])
    op.create_index("ix_service_assignments_branch_id", "service_assignments", ["branch_id"])
    op.create_index("ix_service_assignments_origin_branch_id", "service_assignments", ["origin_branch_id"])
    op.create_index("ix_service_assignments_status", "service_assignments", ["status"])
    op.create_index(
        "ix_service_assignments_technician_status", "service_assignments", ["technician_id", "status"]
    )
    op.create_index(
        "uq_service_assignments_open_machine",
        "service_assignments",
        ["machine_id"],
        unique=True,
        sqlite_where=sa.text("status != 'COMPLETED'"),
        postgresql_where=sa.text("status != 'COMPLETED'"),
    )

    op.create_table(
        "service_assignment_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), sa.ForeignKey("service_assignments.id"), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("performed_by", sa.String(length=128), nullable=True),
        sa.Column("performed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("performed_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_assignment_logs_assignment_id", "service_assignment_logs", ["assignment_id"])

    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), sa.ForeignKey("service_assignments.id"), nullable=True),
        sa.Column("machine_id", sa.Integer(), sa.ForeignKey("machines.id"), nullable=True),
        sa.Column("serial_number", sa.String(length=64), nullable=False),
        sa.Column("request_key", sa.String(length=96), nullable=False),
        sa.Column("center_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("target_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("proposed_parts", sa.JSON(), nullable=True),
        sa.Column("proposed_cost_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("requested_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("requested_by_name", sa.String(length=128), nullable=True),
        _ts("created_at"),
        sa.Column("responder_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("responder_name", sa.String(length=128), nullable=True),
        _ts("responded_at", nullable=True, server_default=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_approval_requests_assignment_id", "approval_requests", ["assignment_id"])
    op.create_index("ix_approval_requests_serial_number", "approval_requests", ["serial_number"])
    op.create_index("ix_approval_requests_request_key", "approval_requests", ["request_key"])
    op.create_index("ix_approval_requests_status", "approval_requests", ["status"])
    op.create_index("ix_approval_requests_target_status", "approval_requests", ["target_branch_id", "status"])
    op.create_index(
        "uq_approval_requests_pending_key",
        "approval_requests",
        ["request_key"],
        unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "branch_debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("debtor_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("creditor_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("assignment_id", sa.Integer(), sa.ForeignKey("service_assignments.id"), nullable=True),
        sa.Column("machine_serial", sa.String(length=64), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_amount_cents", sa.Integer(), nullable=False),
        sa.Column("parts_details", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("receipt_number", sa.String(length=64), nullable=True, unique=True),
        sa.Column("payment_place", sa.String(length=128), nullable=True),
        sa.Column("paid_by", sa.String(length=128), nullable=True),
        sa.Column("paid_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _ts("paid_at", nullable=True, server_default=False),
        _ts("created_at"),
        sa.CheckConstraint("remaining_amount_cents >= 0", name="ck_branch_debts_remaining_non_negative"),
        sa.CheckConstraint("amount_cents > 0", name="ck_branch_debts_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branch_debts_assignment_id", "branch_debts", ["assignment_id"])
    op.create_index("ix_branch_debts_machine_serial", "branch_debts", ["machine_serial"])
    op.create_index("ix_branch_debts_status", "branch_debts", ["status"])
    op.create_index("ix_branch_debts_created_at", "branch_debts", ["created_at"])
    op.create_index("ix_branch_debts_debtor_status", "branch_debts", ["debtor_branch_id", "status"])
    op.create_index("ix_branch_debts_creditor_status", "branch_debts", ["creditor_branch_id", "status"])

    op.create_table(
        "ledger_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("debt_id", sa.Integer(), sa.ForeignKey("branch_debts.id"), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_type", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=False, unique=True),
        sa.Column("payment_place", sa.String(length=128), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("user_name", sa.String(length=128), nullable=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        _ts("created_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_payments_debt_id", "ledger_payments", ["debt_id"])
    op.create_index("ix_ledger_payments_branch_id", "ledger_payments", ["branch_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_name", sa.String(length=128), nullable=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        _ts("occurred_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_logs_branch_id", "audit_logs", ["branch_id"])
    op.create_index("ix_audit_logs_occurred_at", "audit_logs", ["occurred_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", sa.String(length=48), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("link", sa.String(length=255), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        _ts("created_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_notifications_branch_id", "notifications", ["branch_id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade():
    for table in (
        "notifications",
        "audit_logs",
        "ledger_payments",
        "branch_debts",
        "approval_requests",
        "service_assignment_logs",
        "service_assignments",
        "document_sequences",
        "transfer_order_items",
        "transfer_orders",
        "stock_movements",
        "branch_part_stock",
        "spare_parts",
        "sim_cards",
        "machine_movement_logs",
        "machines",
        "role_permission_overrides",
        "session_tokens",
        "users",
        "branches",
    ):
        op.drop_table(table)
