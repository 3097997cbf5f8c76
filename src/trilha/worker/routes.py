from trilha.audit.application.audit_worker_task import (
    log_audit_batch_task,
    log_audit_event_task,
)
from trilha.jobs.job_models import Task
from trilha.main.container.container import Container
from trilha.worker.worker import Worker

worker = Worker()


@worker.function(name=Task.LOG_AUDIT_EVENT.value)
async def log_audit_event(job_id: str, params: dict, container: Container, job_try: int = 1):
    """Worker function for persisting a single audit log.

    Note: params is a dict here because it comes from ARQ, it is validated
    into an AuditJob inside the task function.
    """
    return await log_audit_event_task(
        job_id=job_id, params=params, container=container, job_try=job_try
    )


@worker.function(name=Task.LOG_AUDIT_BATCH.value)
async def log_audit_batch(job_id: str, params: dict, container: Container, job_try: int = 1):
    return await log_audit_batch_task(
        job_id=job_id, params=params, container=container, job_try=job_try
    )
