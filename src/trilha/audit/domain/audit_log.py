"""Audit log domain model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trilha.audit.domain.operation_types import OperationType
from trilha.audit.domain.risk_level import RiskLevel


class AuditLogDraft(BaseModel):
    """Command to create one audit log.

    This is also the payload carried by queue jobs, so it has to survive a
    JSON round trip.
    """

    model_config = ConfigDict(extra="forbid")

    operation_type: OperationType
    affected_entity: str = Field(min_length=1, max_length=100)
    affected_entity_id: Optional[str] = Field(default=None, max_length=100)
    previous_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    user_id: Optional[str] = Field(default=None, max_length=100)
    source_ip: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = Field(default=None, max_length=10)
    sensitive_fields_accessed: Optional[list[str]] = None
    risk_level: Optional[RiskLevel] = None
    lgpd_relevant: Optional[bool] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None

    @field_validator("affected_entity")
    @classmethod
    def affected_entity_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("affected_entity cannot be blank")
        return value.strip()

    def to_job_payload(self) -> dict:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class AuditLog:
    """Immutable record of a sensitive operation, as persisted."""

    id: UUID
    operation_type: OperationType
    affected_entity: str
    occurred_at: datetime
    affected_entity_id: Optional[str] = None
    previous_data: Optional[dict] = None
    new_data: Optional[dict] = None
    user_id: Optional[str] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = None
    sensitive_fields_accessed: Optional[list[str]] = None
    risk_level: Optional[RiskLevel] = None
    lgpd_relevant: bool = False
    reason: Optional[str] = None
    description: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate invariants."""
        if not self.affected_entity or not self.affected_entity.strip():
            raise ValueError("affected_entity is required")
        if self.occurred_at is None:
            raise ValueError("occurred_at is required")
