"""Read-side models: queries, pages and aggregate reports."""

from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.operation_types import OperationType
from trilha.audit.domain.risk_level import RiskLevel

MAX_PAGE_SIZE = 1000


class AuditLogQuery(BaseModel):
    """Filters for paginated audit log queries. All filters are optional and combined with AND."""

    operation_type: Optional[OperationType] = None
    affected_entity: Optional[str] = None
    affected_entity_id: Optional[str] = None
    user_id: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    lgpd_relevant: Optional[bool] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    # Case-insensitive match on description, endpoint and affected entity
    search: Optional[str] = Field(default=None, max_length=200)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must be before to_date")
        return self


@dataclass
class AuditLogPage:
    items: list[AuditLog]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return ceil(self.total / self.page_size) if self.page_size else 0


@dataclass
class SensitiveAccessReport:
    """Sensitive-data accesses in a period, counted per field and per user."""

    from_date: datetime
    to_date: datetime
    total_accesses: int
    by_field: dict[str, int] = field(default_factory=dict)
    by_user: dict[str, int] = field(default_factory=dict)


@dataclass
class AuditStatistics:
    total_events: int
    events_by_operation: dict[str, int] = field(default_factory=dict)
    events_by_risk_level: dict[str, int] = field(default_factory=dict)
    lgpd_events: int = 0
    top_entities: list[tuple[str, int]] = field(default_factory=list)
    top_users: list[tuple[str, int]] = field(default_factory=list)
