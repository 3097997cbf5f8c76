"""Bus subscribers that turn audit events into persisted audit logs."""

from datetime import tzinfo
from typing import Any, Awaitable, Callable, Optional

from trilha.audit.application.audit_dispatcher import AuditDispatcher
from trilha.audit.application.risk_classifier import (
    RiskFactors,
    classify_changed_fields,
    classify_risk,
)
from trilha.audit.domain.audit_log import AuditLogDraft
from trilha.audit.domain.event_types import AuditEventType, AuditTopic, operation_type_for
from trilha.audit.domain.events import (
    AuditEventBase,
    AuthEvent,
    EntityAccessedEvent,
    EntityCreatedEvent,
    EntityDeletedEvent,
    EntityUpdatedEvent,
    SecurityEvent,
    SensitiveDataEvent,
    SystemEvent,
)
from trilha.audit.domain.risk_level import RiskLevel
from trilha.audit.infrastructure.event_bus import InMemoryEventBus
from trilha.main.exceptions import DuplicateRegistrationError
from trilha.main.logging import get_logger

logger = get_logger(__name__)


def _request_fields(event: AuditEventBase) -> dict[str, Any]:
    context = event.request_context
    if context is None:
        return {}
    return {
        "source_ip": context.ip,
        "user_agent": context.user_agent,
        "endpoint": context.endpoint,
        "http_method": context.method,
    }


class AuditEventListener:
    """Maps each event variant to an AuditLogDraft and hands it to the dispatcher."""

    def __init__(self, dispatcher: AuditDispatcher, local_timezone: Optional[tzinfo] = None):
        self.dispatcher = dispatcher
        self.local_timezone = local_timezone
        self._registered_on: set[int] = set()

    def _handlers(self) -> dict[AuditTopic, Callable[[Any], Awaitable[None]]]:
        return {
            AuditTopic.ENTITY_CREATED: self.on_entity_created,
            AuditTopic.ENTITY_UPDATED: self.on_entity_updated,
            AuditTopic.ENTITY_DELETED: self.on_entity_deleted,
            AuditTopic.ENTITY_ACCESSED: self.on_entity_accessed,
            AuditTopic.SENSITIVE_DATA: self.on_sensitive_data,
            AuditTopic.SECURITY: self.on_security_event,
            AuditTopic.SYSTEM: self.on_system_event,
            AuditTopic.AUTH: self.on_auth_event,
        }

    def register(self, bus: InMemoryEventBus) -> None:
        """Subscribe one handler per topic.

        Raises:
            DuplicateRegistrationError: If this listener is already registered on the bus.
        """
        if id(bus) in self._registered_on:
            raise DuplicateRegistrationError(type(self).__name__)

        for topic, handler in self._handlers().items():
            bus.subscribe(topic.value, handler, name=f"audit_listener.{handler.__name__}")
        self._registered_on.add(id(bus))

        logger.info("Audit event listener registered", extra={"topics": len(self._handlers())})

    def _score(self, event: AuditEventBase, sensitive: bool = False) -> RiskLevel:
        scored = classify_risk(
            RiskFactors(
                occurred_at=event.timestamp,
                event_type=event.event_type,
                sensitive_data_accessed=sensitive,
                actor_role=event.user_role,
            ),
            tz=self.local_timezone,
        )
        return RiskLevel.highest(event.risk_level, scored)

    def _draft(
        self, event: AuditEventBase, extra_metadata: Optional[dict] = None, **fields
    ) -> AuditLogDraft:
        metadata = {**event.metadata, "event_type": event.event_type.value}
        metadata.update(extra_metadata or {})
        if event.user_role:
            metadata["user_role"] = event.user_role

        values: dict[str, Any] = {
            "operation_type": operation_type_for(event.event_type),
            "affected_entity": event.entity_name,
            "affected_entity_id": event.entity_id,
            "user_id": event.user_id,
            "risk_level": event.risk_level,
            "occurred_at": event.timestamp,
            "metadata": metadata,
            **_request_fields(event),
        }
        values.update(fields)
        return AuditLogDraft(**values)

    async def _dispatch(self, draft: AuditLogDraft) -> None:
        await self.dispatcher.dispatch(draft)

    async def on_entity_created(self, event: EntityCreatedEvent) -> None:
        await self._dispatch(
            self._draft(event, new_data=event.new_data, lgpd_relevant=event.lgpd_relevant)
        )

    async def on_entity_updated(self, event: EntityUpdatedEvent) -> None:
        await self._dispatch(
            self._draft(
                event,
                previous_data=event.previous_data,
                new_data=event.new_data,
                sensitive_fields_accessed=event.sensitive_fields_changed or None,
                risk_level=classify_changed_fields(event.changed_fields),
                lgpd_relevant=event.lgpd_relevant or bool(event.sensitive_fields_changed),
                extra_metadata={"changed_fields": event.changed_fields},
            )
        )

    async def on_entity_deleted(self, event: EntityDeletedEvent) -> None:
        await self._dispatch(
            self._draft(
                event,
                previous_data=event.previous_data,
                risk_level=RiskLevel.HIGH,
                lgpd_relevant=event.lgpd_relevant,
            )
        )

    async def on_entity_accessed(self, event: EntityAccessedEvent) -> None:
        await self._dispatch(
            self._draft(event, risk_level=self._score(event), lgpd_relevant=event.lgpd_relevant)
        )

    async def on_sensitive_data(self, event: SensitiveDataEvent) -> None:
        await self._dispatch(
            self._draft(
                event,
                sensitive_fields_accessed=event.sensitive_fields,
                risk_level=RiskLevel.HIGH,
                lgpd_relevant=True,
                reason=event.reason,
            )
        )

    async def on_security_event(self, event: SecurityEvent) -> None:
        await self._dispatch(
            self._draft(
                event,
                risk_level=RiskLevel.HIGH,
                reason=event.description,
                description=event.description,
            )
        )

    async def on_system_event(self, event: SystemEvent) -> None:
        extra_metadata = {"error_details": event.error_details} if event.error_details else None

        is_error = event.event_type == AuditEventType.SYSTEM_ERROR
        await self._dispatch(
            self._draft(
                event,
                risk_level=RiskLevel.HIGH if is_error else RiskLevel.LOW,
                description=event.message,
                extra_metadata=extra_metadata,
            )
        )

    async def on_auth_event(self, event: AuthEvent) -> None:
        extra_metadata = {"username": event.username} if event.username else None

        await self._dispatch(
            self._draft(
                event,
                risk_level=self._score(event),
                reason=event.reason,
                extra_metadata=extra_metadata,
            )
        )
