from dependency_injector import containers, providers
from sqlalchemy.ext.asyncio import AsyncSession

from trilha.audit.application.audit_core_service import AuditCoreService
from trilha.audit.application.audit_integrity_service import AuditIntegrityService
from trilha.audit.application.audit_queue_processor import AuditQueueProcessor
from trilha.audit.infrastructure.audit_log_repo_impl import AuditLogRepositoryImpl
from trilha.audit.infrastructure.dead_letter_store import DeadLetterStore
from trilha.audit.infrastructure.event_bus import NotificationOutbox
from trilha.audit.infrastructure.event_bus import event_bus as audit_event_bus
from trilha.audit.infrastructure.signature_repo_impl import AuditSignatureRepositoryImpl
from trilha.audit.infrastructure.signature_service import build_signature_service
from trilha.main.config import get_settings


class Container(containers.DeclarativeContainer):
    session = providers.Dependency()
    redis = providers.Dependency()

    settings = providers.Callable(get_settings)
    event_bus = providers.Object(audit_event_bus)
    # One outbox per container, flushed by whoever commits the session
    notification_outbox = providers.Singleton(NotificationOutbox, event_bus=event_bus)

    # Repositories
    audit_log_repo = providers.Factory(AuditLogRepositoryImpl, session=session)
    audit_signature_repo = providers.Factory(AuditSignatureRepositoryImpl, session=session)

    # Services
    signature_service = providers.Singleton(build_signature_service)
    audit_core_service = providers.Factory(
        AuditCoreService,
        repository=audit_log_repo,
        event_bus=event_bus,
        outbox=notification_outbox,
        batch_max_size=settings.provided.audit_batch_max_size,
        local_timezone=settings.provided.local_timezone,
    )
    audit_integrity_service = providers.Factory(
        AuditIntegrityService,
        audit_log_repo=audit_log_repo,
        signature_repo=audit_signature_repo,
        signature_service=signature_service,
    )
    dead_letter_store = providers.Factory(DeadLetterStore, redis=redis)
    audit_queue_processor = providers.Factory(
        AuditQueueProcessor,
        core_service=audit_core_service,
        dead_letter_store=dead_letter_store,
        integrity_service=audit_integrity_service,
        session=session,
        max_attempts=settings.provided.audit_queue_max_attempts,
        base_delay_seconds=settings.provided.audit_retry_base_delay_seconds,
        max_delay_seconds=settings.provided.audit_retry_max_delay_seconds,
        compression_threshold_bytes=settings.provided.audit_compression_threshold_bytes,
    )

    @classmethod
    def for_session(cls, session: AsyncSession, redis=None) -> "Container":
        container = cls(session=providers.Object(session))
        if redis is not None:
            container.redis.override(providers.Object(redis))
        return container
