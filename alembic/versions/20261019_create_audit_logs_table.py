"""create audit logs and signatures tables

Revision ID: create_audit_logs
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

# revision identifiers, used by Alembic
revision = "create_audit_logs"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        # What happened
        sa.Column("operation_type", sa.String(20), nullable=False),
        sa.Column("affected_entity", sa.String(100), nullable=False),
        sa.Column("affected_entity_id", sa.String(100), nullable=True),
        sa.Column("previous_data", JSONB, nullable=True),
        sa.Column("new_data", JSONB, nullable=True),
        # Who, no foreign key: users can be removed without touching the trail
        sa.Column("user_id", sa.String(100), nullable=True),
        # Request context
        sa.Column("source_ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("http_method", sa.String(10), nullable=True),
        # Classification
        sa.Column("sensitive_fields_accessed", ARRAY(sa.String(100)), nullable=True),
        sa.Column("risk_level", sa.String(20), nullable=True),
        sa.Column("lgpd_relevant", sa.Boolean(), nullable=False, server_default="false"),
        # Why
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
        sa.Column("occurred_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("idx_audit_logs_user_created", "audit_logs", ["user_id", "created_at"])
    op.create_index(
        "idx_audit_logs_entity_created", "audit_logs", ["affected_entity", "created_at"]
    )
    op.create_index(
        "idx_audit_logs_operation_created", "audit_logs", ["operation_type", "created_at"]
    )
    op.create_index(
        "idx_audit_logs_entity_id", "audit_logs", ["affected_entity", "affected_entity_id"]
    )
    op.create_index(
        "idx_audit_logs_lgpd_occurred",
        "audit_logs",
        ["occurred_at"],
        postgresql_where=sa.text("lgpd_relevant"),
    )

    op.create_table(
        "audit_log_signatures",
        sa.Column("log_id", UUID(as_uuid=True), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("issued_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["log_id"], ["audit_logs.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("log_id"),
    )


def downgrade() -> None:
    op.drop_table("audit_log_signatures")

    op.drop_index("idx_audit_logs_lgpd_occurred", "audit_logs")
    op.drop_index("idx_audit_logs_entity_id", "audit_logs")
    op.drop_index("idx_audit_logs_operation_created", "audit_logs")
    op.drop_index("idx_audit_logs_entity_created", "audit_logs")
    op.drop_index("idx_audit_logs_user_created", "audit_logs")

    op.drop_table("audit_logs")
