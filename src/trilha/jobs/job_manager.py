from datetime import timedelta
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis
from arq.jobs import Job

from trilha.audit.domain.audit_job import AuditJobPriority
from trilha.jobs.job_models import Task
from trilha.main.config import get_settings
from trilha.main.exceptions import NotReadyException
from trilha.main.logging import get_logger
from trilha.redis.connection import build_arq_redis_settings

logger = get_logger(__name__)


class JobManager:
    def __init__(self):
        self._redis: ArqRedis | None = None

    @property
    def is_ready(self) -> bool:
        return self._redis is not None

    @property
    def redis(self) -> ArqRedis:
        if self._redis is None:
            raise NotReadyException("Job manager is not initialized!")
        return self._redis

    async def init(self):
        if self._redis is not None:
            return

        settings = get_settings()
        self._redis = await create_pool(build_arq_redis_settings(settings))

        logger.debug(
            f"Job manager connected to redis on host {settings.redis_host}"
            f" and port {settings.redis_port}"
        )

    async def close(self):
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None

    def _defer_for(self, priority: AuditJobPriority) -> timedelta | None:
        # arq has no native priorities; low priority work is scheduled slightly later
        if priority == AuditJobPriority.LOW:
            seconds = get_settings().audit_low_priority_defer_seconds
            return timedelta(seconds=seconds) if seconds else None
        return None

    async def enqueue(
        self,
        task: Task,
        job_id: UUID,
        params: dict,
        priority: AuditJobPriority = AuditJobPriority.NORMAL,
    ) -> Job:
        if self._redis is None:
            raise NotReadyException("Job manager is not initialized!")

        job = await self._redis.enqueue_job(
            task.value,
            params,
            _job_id=str(job_id),
            _defer_by=self._defer_for(priority),
        )
        if job is None:
            # arq returns None when a job with this id already exists
            logger.warning("Audit job already enqueued", extra={"job_id": str(job_id)})
            return Job(job_id=str(job_id), redis=self._redis)
        return job


job_manager = JobManager()
