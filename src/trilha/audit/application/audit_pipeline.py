"""Wiring of the in-process audit pipeline: emitter, bus, listener and dispatcher."""

from dataclasses import dataclass

from trilha.audit.application.audit_dispatcher import AuditDispatcher
from trilha.audit.application.audit_event_emitter import AuditEventEmitter
from trilha.audit.application.audit_event_listener import AuditEventListener
from trilha.audit.application.request_capture import RequestAuditCapture
from trilha.audit.infrastructure.event_bus import InMemoryEventBus
from trilha.audit.infrastructure.request_deduplication import RequestDeduplicationCache
from trilha.jobs.job_manager import JobManager
from trilha.main.config import Settings


@dataclass
class AuditPipeline:
    event_bus: InMemoryEventBus
    emitter: AuditEventEmitter
    listener: AuditEventListener
    dispatcher: AuditDispatcher
    dedup_cache: RequestDeduplicationCache
    capture: RequestAuditCapture

    async def start(self) -> None:
        self.dedup_cache.start()

    async def stop(self) -> None:
        await self.emitter.drain()
        await self.dedup_cache.stop()


def build_audit_pipeline(
    settings: Settings,
    event_bus: InMemoryEventBus,
    job_manager: JobManager,
    **dispatcher_kwargs,
) -> AuditPipeline:
    """Build the pipeline and subscribe its listener to the bus.

    Call once per bus: a second call raises DuplicateRegistrationError.
    """
    dispatcher = AuditDispatcher(
        job_manager, queue_enabled=settings.audit_queue_enabled, **dispatcher_kwargs
    )
    listener = AuditEventListener(dispatcher, local_timezone=settings.local_timezone)
    listener.register(event_bus)

    emitter = AuditEventEmitter(event_bus)
    dedup_cache = RequestDeduplicationCache(
        ttl_seconds=settings.audit_dedup_ttl_seconds,
        sweep_interval_seconds=settings.audit_dedup_sweep_interval_seconds,
        max_entries=settings.audit_dedup_max_entries,
    )
    return AuditPipeline(
        event_bus=event_bus,
        emitter=emitter,
        listener=listener,
        dispatcher=dispatcher,
        dedup_cache=dedup_cache,
        capture=RequestAuditCapture(emitter, dedup_cache),
    )
