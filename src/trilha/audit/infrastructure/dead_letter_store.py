"""Redis-backed store for audit jobs that exhausted their retries."""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import orjson
import redis.asyncio as aioredis
from pydantic import BaseModel, Field

from trilha.audit.domain.audit_job import AuditJob, AuditJobKind, AuditJobPriority
from trilha.main.config import get_settings
from trilha.main.logging import get_logger

logger = get_logger(__name__)


class DeadLetterRecord(BaseModel):
    """A parked audit job, kept for operator inspection.

    Attributes:
        job_id: Original queue job id
        kind: Single or batch job
        entity_names: Affected entities in the payload, for quick triage
        failure_reason: Message of the last error
        error_type: Class name of the last error
        attempts_made: Attempts consumed before parking
        max_attempts: Attempt ceiling in force when the job was parked
        priority: Original priority
        retryable: False when the job was parked without exhausting retries
        payload: The original job payload, enough to requeue it
        first_enqueued_at: When the job entered the queue
        failed_at: When the job was parked
    """

    job_id: UUID
    kind: AuditJobKind
    entity_names: list[str] = Field(default_factory=list)
    failure_reason: str
    error_type: str
    attempts_made: int
    max_attempts: int
    priority: AuditJobPriority
    retryable: bool
    payload: dict[str, Any]
    first_enqueued_at: datetime
    failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_job(
        cls,
        job: AuditJob,
        error: BaseException,
        max_attempts: int,
        retryable: bool,
    ) -> "DeadLetterRecord":
        return cls(
            job_id=job.job_id,
            kind=job.kind,
            entity_names=job.entity_names,
            failure_reason=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            attempts_made=job.attempts,
            max_attempts=max_attempts,
            priority=job.priority,
            retryable=retryable,
            payload=job.to_task_params(),
            first_enqueued_at=job.enqueued_at,
        )

    def to_redis_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_redis_dict(cls, data: dict) -> "DeadLetterRecord":
        return cls.model_validate(data)


class DeadLetterStore:
    """Parks failed audit jobs in Redis.

    Key pattern: audit_dead_letter:{job_id}
    Index: sorted set audit_dead_letter:index scored by failure time
    TTL: audit_dead_letter_ttl_days
    """

    KEY_PREFIX = "audit_dead_letter"

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis
        self._settings = get_settings()

    def _key(self, job_id: UUID) -> str:
        return f"{self.KEY_PREFIX}:{job_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.KEY_PREFIX}:index"

    def _ttl_seconds(self) -> int:
        return self._settings.audit_dead_letter_ttl_days * 24 * 3600

    async def park(self, record: DeadLetterRecord) -> None:
        await self.redis.setex(
            self._key(record.job_id),
            self._ttl_seconds(),
            orjson.dumps(record.to_redis_dict()),
        )
        await self.redis.zadd(self._index_key, {str(record.job_id): record.failed_at.timestamp()})

        logger.error(
            "Audit job parked in dead-letter store",
            extra={
                "job_id": str(record.job_id),
                "kind": record.kind.value,
                "entities": record.entity_names,
                "attempts_made": record.attempts_made,
                "retryable": record.retryable,
                "failure_reason": record.failure_reason,
            },
        )

    async def get(self, job_id: UUID) -> Optional[DeadLetterRecord]:
        data = await self.redis.get(self._key(job_id))
        if not data:
            return None
        return DeadLetterRecord.from_redis_dict(orjson.loads(data))

    async def list_recent(self, limit: int = 100) -> list[DeadLetterRecord]:
        """Most recently parked jobs first. Expired entries are pruned from the index."""
        job_ids = await self.redis.zrevrange(self._index_key, 0, limit - 1)
        records = []
        for raw_id in job_ids:
            job_id = UUID(raw_id.decode() if isinstance(raw_id, bytes) else raw_id)
            record = await self.get(job_id)
            if record is None:
                await self.redis.zrem(self._index_key, str(job_id))
                continue
            records.append(record)
        return records

    async def remove(self, job_id: UUID) -> bool:
        deleted = await self.redis.delete(self._key(job_id))
        await self.redis.zrem(self._index_key, str(job_id))
        return bool(deleted)

    async def count(self) -> int:
        return await self.redis.zcard(self._index_key)
