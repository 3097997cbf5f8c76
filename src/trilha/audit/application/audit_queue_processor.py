"""Queue-side processing of audit jobs: persist, retry with backoff, or park."""

import contextlib
from typing import Optional

from arq import Retry
from sqlalchemy.ext.asyncio import AsyncSession

from trilha.audit.application.audit_core_service import AuditCoreService
from trilha.audit.application.audit_integrity_service import AuditIntegrityService
from trilha.audit.application.payload_compression import compress_draft
from trilha.audit.domain.audit_job import AuditJob, AuditJobKind, AuditJobStatus
from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.infrastructure.dead_letter_store import DeadLetterRecord, DeadLetterStore
from trilha.main.exceptions import AuditValidationError, ConfigurationError
from trilha.main.logging import get_logger

logger = get_logger(__name__)

# Retrying cannot fix these
NON_RETRYABLE_ERRORS = (AuditValidationError, ConfigurationError)

# Extra queue attempts reserved for parking a job whose last attempt failed
PARK_RETRIES = 1


async def persist_audit_job(
    job: AuditJob,
    core_service: AuditCoreService,
    integrity_service: Optional[AuditIntegrityService] = None,
    compression_threshold_bytes: int = 1024,
) -> list[AuditLog]:
    """Write the drafts of a job. Batch flags are applied around the single insert."""
    if job.kind == AuditJobKind.SINGLE:
        return [await core_service.create_audit_log(job.drafts[0])]

    drafts = job.drafts
    if job.compress:
        drafts = [compress_draft(draft, compression_threshold_bytes) for draft in drafts]

    created = await core_service.create_audit_logs_batch(drafts)
    if job.sign:
        if integrity_service is None:
            raise ConfigurationError("Batch requested signing but no signature service is set")
        await integrity_service.sign_records(created)
    return created


class AuditQueueProcessor:
    def __init__(
        self,
        core_service: AuditCoreService,
        dead_letter_store: DeadLetterStore,
        integrity_service: Optional[AuditIntegrityService] = None,
        session: Optional[AsyncSession] = None,
        max_attempts: int = 3,
        base_delay_seconds: float = 2.0,
        max_delay_seconds: float = 300.0,
        compression_threshold_bytes: int = 1024,
    ):
        self.core_service = core_service
        self.dead_letter_store = dead_letter_store
        self.integrity_service = integrity_service
        self.session = session
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.compression_threshold_bytes = compression_threshold_bytes

    def retry_delay(self, attempt: int) -> float:
        """Delay before the next attempt, after `attempt` attempts have failed."""
        return min(self.base_delay_seconds * 2 ** (attempt - 1), self.max_delay_seconds)

    def _savepoint(self):
        # A failed attempt rolls back only its own writes, not the job's transaction
        if self.session is None:
            return contextlib.nullcontext()
        return self.session.begin_nested()

    def _discard_notifications(self) -> None:
        outbox = getattr(self.core_service, "outbox", None)
        if outbox is not None:
            outbox.discard()

    async def _park(
        self, job: AuditJob, error: Exception, retryable: bool, job_try: int
    ) -> dict:
        job.transition(AuditJobStatus.FAILED)
        record = DeadLetterRecord.from_job(
            job, error, max_attempts=self.max_attempts, retryable=retryable
        )
        result = {
            "job_id": str(job.job_id),
            "status": job.status.value,
            "attempts": job.attempts,
            "error": str(error),
            "parked": True,
        }

        try:
            await self.dead_letter_store.park(record)
        except Exception as park_error:
            # The log line carries the whole record so the job is never lost silently
            logger.error(
                "Audit job could not be parked",
                extra={
                    "job_id": str(job.job_id),
                    "error": str(park_error),
                    "dead_letter": record.to_redis_dict(),
                },
            )
            if job_try < self.max_attempts + PARK_RETRIES:
                raise Retry(defer=self.max_delay_seconds) from park_error
            result["parked"] = False

        return result

    async def process(self, job: AuditJob, job_try: int = 1) -> dict:
        """
        Run one attempt of an audit job.

        Args:
            job: The job, as rebuilt from the queue payload
            job_try: 1-based attempt number reported by the queue

        Returns:
            A result summary. Failed jobs also return normally so the queue does
            not retry them again, whether or not parking succeeded.

        Raises:
            arq.Retry: If the attempt failed and attempts remain, or parking
                failed and a park retry remains.
        """
        job.attempts = job_try - 1
        if job_try > 1:
            job.status = AuditJobStatus.RETRYING
        job.transition(AuditJobStatus.PROCESSING)

        try:
            async with self._savepoint():
                created = await persist_audit_job(
                    job,
                    self.core_service,
                    integrity_service=self.integrity_service,
                    compression_threshold_bytes=self.compression_threshold_bytes,
                )
        except NON_RETRYABLE_ERRORS as e:
            logger.warning(
                "Audit job failed with a non-retryable error",
                extra={"job_id": str(job.job_id), "error": str(e)},
            )
            self._discard_notifications()
            return await self._park(job, e, retryable=False, job_try=job_try)
        except Exception as e:
            self._discard_notifications()
            if job.attempts < self.max_attempts:
                job.transition(AuditJobStatus.RETRYING)
                delay = self.retry_delay(job.attempts)
                logger.warning(
                    "Audit job attempt failed, retrying",
                    extra={
                        "job_id": str(job.job_id),
                        "attempt": job.attempts,
                        "max_attempts": self.max_attempts,
                        "retry_in_seconds": delay,
                        "error": str(e),
                    },
                )
                raise Retry(defer=delay) from e

            return await self._park(job, e, retryable=True, job_try=job_try)

        job.transition(AuditJobStatus.COMPLETED)
        logger.info(
            "Audit job completed",
            extra={
                "job_id": str(job.job_id),
                "kind": job.kind.value,
                "count": len(created),
                "attempts": job.attempts,
            },
        )
        return {
            "job_id": str(job.job_id),
            "status": job.status.value,
            "audit_log_ids": [str(audit_log.id) for audit_log in created],
        }
