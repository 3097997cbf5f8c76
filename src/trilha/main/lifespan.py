"""Process bootstrap for API processes and workers."""

import contextlib
from typing import AsyncIterator, Optional

from trilha.audit.application.audit_health_service import (
    AuditHealthReport,
    AuditHealthService,
    HealthThresholds,
)
from trilha.audit.application.audit_pipeline import AuditPipeline, build_audit_pipeline
from trilha.audit.infrastructure.event_bus import event_bus
from trilha.audit.infrastructure.signature_service import build_signature_service
from trilha.database.database import sessionmanager
from trilha.jobs.job_manager import job_manager
from trilha.main.config import get_settings
from trilha.main.exceptions import ConfigurationError, NotReadyException
from trilha.main.logging import get_logger

logger = get_logger(__name__)


class Lifespan:
    def __init__(self):
        self._pipeline: Optional[AuditPipeline] = None

    @property
    def pipeline(self) -> AuditPipeline:
        if self._pipeline is None:
            raise NotReadyException("Audit pipeline is not initialized!")
        return self._pipeline

    async def startup(self):
        settings = get_settings()

        sessionmanager.init(settings.database_url)

        if settings.audit_queue_enabled:
            await job_manager.init()

        try:
            build_signature_service(settings)
        except ConfigurationError:
            logger.critical("Audit signing key is missing, refusing to start")
            raise

        # Startup can run more than once in tests; the listener must only subscribe once
        if self._pipeline is None:
            self._pipeline = build_audit_pipeline(settings, event_bus, job_manager)
        await self._pipeline.start()

        logger.info(
            "Audit pipeline started",
            extra={"queue_enabled": settings.audit_queue_enabled},
        )

    async def check_health(self) -> AuditHealthReport:
        settings = get_settings()
        async with sessionmanager.session() as session:
            service = AuditHealthService(
                session=session,
                redis=job_manager.redis if job_manager.is_ready else None,
                dispatch_stats=self._pipeline.dispatcher.stats if self._pipeline else None,
                queue_enabled=settings.audit_queue_enabled,
                thresholds=HealthThresholds.from_settings(settings),
            )
            return await service.check()

    async def shutdown(self):
        if self._pipeline is not None:
            await self._pipeline.stop()

        await job_manager.close()
        await sessionmanager.close()


lifespan = Lifespan()


@contextlib.asynccontextmanager
async def run_lifespan() -> AsyncIterator[AuditPipeline]:
    await lifespan.startup()
    try:
        yield lifespan.pipeline
    finally:
        await lifespan.shutdown()
