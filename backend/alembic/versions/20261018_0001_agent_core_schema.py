"""agent core schema: agents, activity ledger, approvals, transactions,
idempotency keys, daily spend counters, audit logs

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

agent_status = sa.Enum("active", "paused", "disabled", "archived", name="agentstatus")
activity_type = sa.Enum("planning", "tool_call", "approval_requested", "completion", "error", name="activitytype")
tool_status = sa.Enum("success", "failure", "pending", name="toolstatus")
approval_status = sa.Enum("pending", "approved", "rejected", "expired", name="approvalstatus")
transaction_status = sa.Enum("pending", "confirmed", "failed", name="transactionstatus")
idempotency_status = sa.Enum("pending", "completed", "failed", name="idempotencystatus")


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()
    tools_type = (
        ARRAY(sa.String(128)) if conn.dialect.name == "postgresql" else sa.JSON
    )

    if "agents" not in existing_tables:
        op.create_table(
            "agents",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("description", sa.Text, server_default=""),
            sa.Column("status", agent_status, server_default="active"),
            sa.Column("tools_enabled", tools_type),
            sa.Column("requires_approval", sa.Boolean, server_default=sa.false()),
            sa.Column("spend_limit", sa.Numeric(36, 18), nullable=True),
            sa.Column("system_prompt", sa.Text, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_agents_owner_id", "agents", ["owner_id"])

    if "agent_activity_log" not in existing_tables:
        op.create_table(
            "agent_activity_log",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id"), nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), nullable=True),
            sa.Column("correlation_id", sa.String(64), nullable=False),
            sa.Column("activity_type", activity_type, nullable=False),
            sa.Column("tool_name", sa.String(128), nullable=True),
            sa.Column("tool_status", tool_status, nullable=False),
            sa.Column("latency_ms", sa.Integer, nullable=True),
            sa.Column("cost", sa.Numeric(18, 6), nullable=True),
            sa.Column("payload", sa.JSON, server_default="{}"),
            sa.Column("error_message", sa.Text, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_activity_log_correlation", "agent_activity_log", ["correlation_id", "created_at"])
        op.create_index("ix_activity_log_agent", "agent_activity_log", ["agent_id", "created_at"])

    if "agent_approval_requests" not in existing_tables:
        op.create_table(
            "agent_approval_requests",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("correlation_id", sa.String(64), nullable=False, unique=True),
            sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("agents.id"), nullable=False),
            sa.Column("user_id", UUID(as_uuid=True), nullable=False),
            sa.Column("input", sa.Text, nullable=False),
            sa.Column("context", sa.JSON, server_default="{}"),
            sa.Column("plan_snapshot", sa.JSON, nullable=False),
            sa.Column("status", approval_status, server_default="pending"),
            sa.Column("reason", sa.Text, nullable=True),
            sa.Column("decided_by", UUID(as_uuid=True), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if "transactions" not in existing_tables:
        op.create_table(
            "transactions",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("from_user_id", sa.String(128), nullable=False),
            sa.Column("to_user_id", sa.String(128), nullable=False),
            sa.Column("from_address", sa.String(128), nullable=True),
            sa.Column("to_address", sa.String(128), nullable=True),
            sa.Column("amount", sa.String(78), nullable=False),
            sa.Column("token_contract", sa.String(128), nullable=False),
            sa.Column("token_symbol", sa.String(32), nullable=True),
            sa.Column("chain_id", sa.Integer, nullable=True),
            sa.Column("message", sa.Text, nullable=True),
            sa.Column("status", transaction_status, server_default="pending"),
            sa.Column("provider_payment_id", sa.String(128), nullable=True),
            sa.Column("payment_link", sa.Text, nullable=True),
            sa.Column("provider_transaction_id", sa.String(128), nullable=True),
            sa.Column("transaction_hash", sa.String(128), nullable=True),
            sa.Column("correlation_id", sa.String(64), nullable=True),
            sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_transactions_status_created", "transactions", ["status", "created_at"])

    if "idempotency_keys" not in existing_tables:
        op.create_table(
            "idempotency_keys",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("owner", sa.String(128), nullable=True),
            sa.Column("method", sa.String(128), nullable=False),
            sa.Column("request_hash", sa.String(128), nullable=False),
            sa.Column("status", idempotency_status, server_default="pending"),
            sa.Column("response_status", sa.Integer, nullable=True),
            sa.Column("response", sa.JSON, nullable=True),
            sa.Column("transaction_id", UUID(as_uuid=True), sa.ForeignKey("transactions.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        )

    if "daily_spend_tracking" not in existing_tables:
        op.create_table(
            "daily_spend_tracking",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("user_id", sa.String(128), nullable=False),
            sa.Column("date", sa.Date, nullable=False),
            sa.Column("transaction_count", sa.Integer, nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "date", name="uq_daily_spend_user_date"),
        )

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", UUID(as_uuid=True), primary_key=True),
            sa.Column("actor_id", sa.String(128), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("resource_type", sa.String(64), nullable=False),
            sa.Column("resource_id", sa.String(128), nullable=True),
            sa.Column("details", sa.JSON, server_default="{}"),
            sa.Column("correlation_id", sa.String(64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("daily_spend_tracking")
    op.drop_table("idempotency_keys")
    op.drop_index("ix_transactions_status_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("agent_approval_requests")
    op.drop_index("ix_activity_log_agent", table_name="agent_activity_log")
    op.drop_index("ix_activity_log_correlation", table_name="agent_activity_log")
    op.drop_table("agent_activity_log")
    op.drop_index("ix_agents_owner_id", table_name="agents")
    op.drop_table("agents")
    bind = op.get_bind()
    for enum in (idempotency_status, transaction_status, approval_status, tool_status, activity_type, agent_status):
        enum.drop(bind, checkfirst=True)
