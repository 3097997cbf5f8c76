"""Audit logging worker tasks."""

from typing import TYPE_CHECKING

from pydantic import ValidationError

from trilha.audit.domain.audit_job import AuditJob, AuditJobKind
from trilha.main.logging import get_logger

if TYPE_CHECKING:
    from trilha.main.container.container import Container

logger = get_logger(__name__)


def _load_job(job_id: str, params: dict, expected: AuditJobKind) -> AuditJob | None:
    try:
        job = AuditJob.model_validate(params)
    except ValidationError as e:
        # Nothing to retry or park: the payload cannot be turned back into a job
        logger.error(
            "Discarding audit job with an invalid payload",
            extra={"job_id": job_id, "errors": e.errors(include_url=False)},
        )
        return None

    if job.kind != expected:
        logger.error(
            "Audit job routed to the wrong task",
            extra={"job_id": job_id, "kind": job.kind.value, "expected": expected.value},
        )
        return None
    return job


async def log_audit_event_task(
    job_id: str,
    params: dict,
    container: "Container",
    job_try: int = 1,
) -> dict:
    """
    Worker task persisting a single audit log.

    Args:
        job_id: ARQ job ID
        params: AuditJob payload as produced by AuditJob.to_task_params
        container: Container bound to the job's session
        job_try: ARQ attempt number, starting at 1

    Returns:
        Dictionary with job result (status and audit_log_ids)
    """
    job = _load_job(job_id, params, AuditJobKind.SINGLE)
    if job is None:
        return {"job_id": job_id, "status": "failed", "error": "invalid payload"}

    return await container.audit_queue_processor().process(job, job_try=job_try)


async def log_audit_batch_task(
    job_id: str,
    params: dict,
    container: "Container",
    job_try: int = 1,
) -> dict:
    """Worker task persisting a batch of audit logs in one statement."""
    job = _load_job(job_id, params, AuditJobKind.BATCH)
    if job is None:
        return {"job_id": job_id, "status": "failed", "error": "invalid payload"}

    return await container.audit_queue_processor().process(job, job_try=job_try)
