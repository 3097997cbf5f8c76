"""Queue job model for asynchronous audit persistence."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from trilha.audit.domain.audit_log import AuditLogDraft
from trilha.audit.domain.risk_level import RiskLevel


class AuditJobKind(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


class AuditJobPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def for_risk(cls, risk_level: Optional[RiskLevel]) -> "AuditJobPriority":
        if risk_level in (RiskLevel.CRITICAL, RiskLevel.HIGH):
            return cls.HIGH
        if risk_level == RiskLevel.MEDIUM:
            return cls.NORMAL
        return cls.LOW


class AuditJobStatus(str, Enum):
    ENQUEUED = "enqueued"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[AuditJobStatus, frozenset[AuditJobStatus]] = {
    AuditJobStatus.ENQUEUED: frozenset({AuditJobStatus.PROCESSING}),
    AuditJobStatus.PROCESSING: frozenset(
        {AuditJobStatus.COMPLETED, AuditJobStatus.RETRYING, AuditJobStatus.FAILED}
    ),
    AuditJobStatus.RETRYING: frozenset({AuditJobStatus.PROCESSING}),
    AuditJobStatus.COMPLETED: frozenset(),
    AuditJobStatus.FAILED: frozenset(),
}


class InvalidJobTransition(Exception):
    def __init__(self, current: AuditJobStatus, target: AuditJobStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move audit job from {current.value} to {target.value}")


class AuditJob(BaseModel):
    """A single or batched audit write travelling through the queue.

    Attributes:
        job_id: Queue job identifier
        kind: Single draft or batch of drafts
        drafts: The drafts to persist (exactly one for single jobs)
        attempts: Number of processing attempts started so far
        priority: Queue priority, derived from the highest risk in the payload
        enqueued_at: When the job was first enqueued
        status: Current lifecycle state
        compress: Batch only, compress large payloads before persisting
        sign: Batch only, issue integrity signatures after persisting
    """

    job_id: UUID = Field(default_factory=uuid4)
    kind: AuditJobKind = AuditJobKind.SINGLE
    drafts: list[AuditLogDraft] = Field(min_length=1)
    attempts: int = Field(default=0, ge=0)
    priority: AuditJobPriority = AuditJobPriority.NORMAL
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: AuditJobStatus = AuditJobStatus.ENQUEUED
    compress: bool = False
    sign: bool = False

    @model_validator(mode="after")
    def validate_shape(self):
        if self.kind == AuditJobKind.SINGLE:
            if len(self.drafts) != 1:
                raise ValueError("single audit jobs carry exactly one draft")
            if self.compress or self.sign:
                raise ValueError("compress and sign flags only apply to batch jobs")
        return self

    @classmethod
    def single(cls, draft: AuditLogDraft, **kwargs) -> "AuditJob":
        kwargs.setdefault("priority", AuditJobPriority.for_risk(draft.risk_level))
        return cls(kind=AuditJobKind.SINGLE, drafts=[draft], **kwargs)

    @classmethod
    def batch(
        cls,
        drafts: list[AuditLogDraft],
        compress: bool = False,
        sign: bool = False,
        **kwargs,
    ) -> "AuditJob":
        if "priority" not in kwargs:
            kwargs["priority"] = min(
                (AuditJobPriority.for_risk(draft.risk_level) for draft in drafts),
                key=_PRIORITY_ORDER.index,
                default=AuditJobPriority.NORMAL,
            )
        return cls(
            kind=AuditJobKind.BATCH,
            drafts=drafts,
            compress=compress,
            sign=sign,
            **kwargs,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (AuditJobStatus.COMPLETED, AuditJobStatus.FAILED)

    @property
    def entity_names(self) -> list[str]:
        return sorted({draft.affected_entity for draft in self.drafts})

    def transition(self, target: AuditJobStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(self.status, target)
        if target == AuditJobStatus.PROCESSING:
            self.attempts += 1
        self.status = target

    def to_task_params(self) -> dict:
        """Serialize for the arq job payload."""
        return self.model_dump(mode="json", exclude={"status", "attempts"})


_PRIORITY_ORDER = [AuditJobPriority.HIGH, AuditJobPriority.NORMAL, AuditJobPriority.LOW]
