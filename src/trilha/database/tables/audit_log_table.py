"""Database tables for audit logs and their signatures."""

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

from trilha.database.tables.base_class import Base, BasePublic


class AuditLog(BasePublic):
    """Append-only audit trail. Rows are never updated after insert."""

    __tablename__ = "audit_logs"

    # clock_timestamp() rather than now(): rows inserted in one transaction
    # still get distinct, increasing times
    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("clock_timestamp()"),
    )

    # WHAT
    operation_type = Column(String(20), nullable=False)
    affected_entity = Column(String(100), nullable=False)
    affected_entity_id = Column(String(100), nullable=True)
    previous_data = Column(JSONB, nullable=True)
    new_data = Column(JSONB, nullable=True)

    # WHO (weak reference, the user may be removed independently)
    user_id = Column(String(100), nullable=True)

    # HOW/WHERE
    source_ip = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    endpoint = Column(Text, nullable=True)
    http_method = Column(String(10), nullable=True)

    # Classification
    sensitive_fields_accessed = Column(ARRAY(String(100)), nullable=True)
    risk_level = Column(String(20), nullable=True)
    lgpd_relevant = Column(Boolean, nullable=False, default=False, server_default="false")

    # WHY
    reason = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    log_metadata = Column("metadata", JSONB, nullable=False, default=dict, server_default="{}")

    # WHEN (caller supplied, may predate insertion)
    occurred_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_audit_logs_user_created", "user_id", "created_at"),
        Index("idx_audit_logs_entity_created", "affected_entity", "created_at"),
        Index("idx_audit_logs_operation_created", "operation_type", "created_at"),
        # Entity trail lookups
        Index("idx_audit_logs_entity_id", "affected_entity", "affected_entity_id"),
        # LGPD reports only touch a small share of the table
        Index(
            "idx_audit_logs_lgpd_occurred",
            "occurred_at",
            postgresql_where=text("lgpd_relevant"),
        ),
    )


class AuditLogSignature(Base):
    """Integrity token issued for an audit log."""

    __tablename__ = "audit_log_signatures"

    log_id = Column(
        UUID(as_uuid=True),
        ForeignKey("audit_logs.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    content_hash = Column(String(64), nullable=False)
    token = Column(Text, nullable=False)
    issued_at = Column(TIMESTAMP(timezone=True), nullable=False)
