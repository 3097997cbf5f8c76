"""Routes audit drafts to persistence: queue first, synchronous only as a fallback.

Every draft takes exactly one of the two paths, never both, so a single event
cannot be written twice by the dispatcher itself.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from trilha.audit.domain.audit_job import AuditJob
from trilha.audit.domain.audit_log import AuditLog, AuditLogDraft
from trilha.jobs.job_manager import JobManager
from trilha.jobs.job_models import Task
from trilha.main.exceptions import AuditValidationError, NotReadyException
from trilha.main.logging import get_logger

logger = get_logger(__name__)

SyncWriter = Callable[[AuditLogDraft], Awaitable[AuditLog]]
BatchWriter = Callable[[AuditJob], Awaitable[list[AuditLog]]]


@dataclass
class DispatchStats:
    queued: int = 0
    synchronous: int = 0
    failed: int = 0


async def write_audit_log_now(draft: AuditLogDraft) -> AuditLog:
    """Persist a draft in its own session and transaction."""
    # Imported here: the container pulls in every repository and service
    from trilha.database.database import sessionmanager
    from trilha.main.container.container import Container

    async with sessionmanager.session() as session:
        async with session.begin():
            container = Container.for_session(session)
            created = await container.audit_core_service().create_audit_log(draft)

    await container.notification_outbox().flush()
    return created


async def write_audit_batch_now(job: AuditJob) -> list[AuditLog]:
    """Persist a batch job in its own session and transaction."""
    from trilha.audit.application.audit_queue_processor import persist_audit_job
    from trilha.database.database import sessionmanager
    from trilha.main.container.container import Container

    async with sessionmanager.session() as session:
        async with session.begin():
            container = Container.for_session(session)
            created = await persist_audit_job(
                job,
                core_service=container.audit_core_service(),
                integrity_service=container.audit_integrity_service() if job.sign else None,
                compression_threshold_bytes=container.settings().audit_compression_threshold_bytes,
            )

    await container.notification_outbox().flush()
    return created


class AuditDispatcher:
    def __init__(
        self,
        job_manager: JobManager,
        sync_writer: SyncWriter = write_audit_log_now,
        batch_writer: BatchWriter = write_audit_batch_now,
        queue_enabled: bool = True,
    ):
        self.job_manager = job_manager
        self.sync_writer = sync_writer
        self.batch_writer = batch_writer
        self.queue_enabled = queue_enabled
        self.stats = DispatchStats()

    @retry(
        wait=wait_random_exponential(min=0.1, max=2),
        stop=stop_after_attempt(3),
        retry=retry_if_not_exception_type(NotReadyException),
        reraise=True,
    )
    async def _enqueue(self, job: AuditJob, task: Task = Task.LOG_AUDIT_EVENT) -> None:
        await self.job_manager.enqueue(
            task,
            job.job_id,
            job.to_task_params(),
            priority=job.priority,
        )

    async def dispatch(self, draft: AuditLogDraft) -> Optional[AuditLog]:
        """
        Hand a draft over for persistence.

        Returns:
            The stored log when it was written synchronously, None when it was queued.

        Raises:
            Whatever the synchronous write raises when the queue path was not available.
        """
        if self.queue_enabled and self.job_manager.is_ready:
            job = AuditJob.single(draft)
            try:
                await self._enqueue(job)
                self.stats.queued += 1
                logger.debug(
                    "Audit log queued",
                    extra={"job_id": str(job.job_id), "priority": job.priority.value},
                )
                return None
            except Exception as e:
                logger.warning(
                    "Audit queue unavailable, writing synchronously",
                    extra={"job_id": str(job.job_id), "error": str(e)},
                )

        try:
            created = await self.sync_writer(draft)
        except AuditValidationError:
            self.stats.failed += 1
            raise
        except Exception:
            self.stats.failed += 1
            logger.exception(
                "Synchronous audit write failed",
                extra={"affected_entity": draft.affected_entity},
            )
            raise

        self.stats.synchronous += 1
        return created

    async def dispatch_batch(
        self,
        drafts: list[AuditLogDraft],
        compress: bool = False,
        sign: bool = False,
    ) -> Optional[list[AuditLog]]:
        """
        Hand a list of drafts over for persistence as one unit.

        Returns:
            The stored logs when they were written synchronously, None when queued.
        """
        job = AuditJob.batch(drafts, compress=compress, sign=sign)

        if self.queue_enabled and self.job_manager.is_ready:
            try:
                await self._enqueue(job, task=Task.LOG_AUDIT_BATCH)
                self.stats.queued += len(drafts)
                return None
            except Exception as e:
                logger.warning(
                    "Audit queue unavailable, writing batch synchronously",
                    extra={"job_id": str(job.job_id), "error": str(e)},
                )

        try:
            created = await self.batch_writer(job)
        except Exception:
            self.stats.failed += len(drafts)
            logger.exception(
                "Synchronous audit batch write failed",
                extra={"job_id": str(job.job_id), "count": len(drafts)},
            )
            raise

        self.stats.synchronous += len(created)
        return created
