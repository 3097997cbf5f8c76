"""Typed publish API used by instrumented call sites.

Publishing never raises and never makes the caller wait for audit
persistence. Invalid events are logged and dropped here, before they reach
the bus.
"""

import asyncio
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from trilha.audit.application.risk_classifier import (
    classify_changed_fields,
    sensitive_fields_in,
)
from trilha.audit.domain.event_types import AuditEventType
from trilha.audit.domain.events import (
    AuditEventBase,
    EntityCreatedEvent,
    EntityDeletedEvent,
    EntityUpdatedEvent,
    RequestContext,
    SecurityEvent,
    SensitiveDataEvent,
    SystemEvent,
    parse_audit_event,
)
from trilha.audit.domain.risk_level import RiskLevel
from trilha.audit.infrastructure.event_bus import InMemoryEventBus
from trilha.main.logging import get_logger

logger = get_logger(__name__)

EventInput = Union[AuditEventBase, Mapping[str, Any]]


class AuditEventEmitter:
    def __init__(self, event_bus: InMemoryEventBus):
        self.event_bus = event_bus
        # Strong references, otherwise pending publications can be garbage collected
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _publish(self, event: AuditEventBase) -> None:
        try:
            result = await self.event_bus.publish(event.topic.value, event)
        except Exception:
            logger.exception(
                "Failed to publish audit event",
                extra={"event_type": event.event_type.value, "entity_name": event.entity_name},
            )
            return

        if result.failed:
            logger.warning(
                "Audit event handlers failed",
                extra={"event_type": event.event_type.value, "handlers": result.failed},
            )

    async def emit(self, event: EventInput, synchronous: bool = False) -> Optional[AuditEventBase]:
        """
        Publish an audit event to its topic.

        Args:
            event: An event variant, or a mapping that is validated into one
            synchronous: Wait for all handlers to finish instead of publishing
                in the background

        Returns:
            The validated event, or None if it was rejected
        """
        try:
            validated = parse_audit_event(event)
        except ValidationError as e:
            event_type = event.get("event_type") if isinstance(event, Mapping) else None
            logger.error(
                "Rejected invalid audit event",
                extra={"event_type": event_type, "errors": e.errors(include_url=False)},
            )
            return None

        if synchronous:
            await self._publish(validated)
            return validated

        task = asyncio.create_task(self._publish(validated))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return validated

    async def drain(self) -> None:
        """Wait for publications started in the background."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _build_and_emit(
        self, factory, synchronous: bool, fields: dict, extra: dict
    ) -> Optional[AuditEventBase]:
        # Explicit extras win over the defaults chosen by the constructor
        fields = {key: value for key, value in {**fields, **extra}.items() if value is not None}
        try:
            event = factory(**fields)
        except ValidationError as e:
            logger.error(
                "Rejected invalid audit event",
                extra={"event_class": factory.__name__, "errors": e.errors(include_url=False)},
            )
            return None
        return await self.emit(event, synchronous=synchronous)

    async def entity_created(
        self,
        entity_name: str,
        entity_id: Any = None,
        user_id: Any = None,
        new_data: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
        synchronous: bool = False,
        **extra,
    ) -> Optional[AuditEventBase]:
        fields = dict(
            entity_name=entity_name,
            entity_id=entity_id,
            user_id=user_id,
            new_data=new_data,
            request_context=request_context,
        )
        return await self._build_and_emit(EntityCreatedEvent, synchronous, fields, extra)

    async def entity_updated(
        self,
        entity_name: str,
        entity_id: Any = None,
        user_id: Any = None,
        previous_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
        changed_fields: Optional[list[str]] = None,
        request_context: Optional[RequestContext] = None,
        synchronous: bool = False,
        **extra,
    ) -> Optional[AuditEventBase]:
        changed_fields = list(changed_fields or [])
        if not changed_fields and previous_data and new_data:
            changed_fields = sorted(
                key
                for key in previous_data.keys() | new_data.keys()
                if previous_data.get(key) != new_data.get(key)
            )

        sensitive = sensitive_fields_in(changed_fields)
        fields = dict(
            entity_name=entity_name,
            entity_id=entity_id,
            user_id=user_id,
            previous_data=previous_data,
            new_data=new_data,
            changed_fields=changed_fields,
            sensitive_fields_changed=sensitive,
            lgpd_relevant=bool(sensitive),
            risk_level=classify_changed_fields(changed_fields),
            request_context=request_context,
        )
        return await self._build_and_emit(EntityUpdatedEvent, synchronous, fields, extra)

    async def entity_deleted(
        self,
        entity_name: str,
        entity_id: Any = None,
        user_id: Any = None,
        previous_data: Optional[dict] = None,
        request_context: Optional[RequestContext] = None,
        synchronous: bool = False,
        **extra,
    ) -> Optional[AuditEventBase]:
        fields = dict(
            entity_name=entity_name,
            entity_id=entity_id,
            user_id=user_id,
            previous_data=previous_data,
            risk_level=RiskLevel.HIGH,
            request_context=request_context,
        )
        return await self._build_and_emit(EntityDeletedEvent, synchronous, fields, extra)

    async def sensitive_access(
        self,
        entity_name: str,
        sensitive_fields: list[str],
        entity_id: Any = None,
        user_id: Any = None,
        reason: Optional[str] = None,
        exported: bool = False,
        request_context: Optional[RequestContext] = None,
        synchronous: bool = False,
        **extra,
    ) -> Optional[AuditEventBase]:
        event_type = (
            AuditEventType.SENSITIVE_DATA_EXPORTED
            if exported
            else AuditEventType.SENSITIVE_DATA_ACCESSED
        )
        fields = dict(
            event_type=event_type,
            entity_name=entity_name,
            entity_id=entity_id,
            user_id=user_id,
            sensitive_fields=sensitive_fields,
            reason=reason,
            risk_level=RiskLevel.HIGH,
            request_context=request_context,
        )
        return await self._build_and_emit(SensitiveDataEvent, synchronous, fields, extra)

    async def security_event(
        self,
        description: str,
        event_type: AuditEventType = AuditEventType.SECURITY_ALERT,
        user_id: Any = None,
        request_context: Optional[RequestContext] = None,
        synchronous: bool = True,
        **extra,
    ) -> Optional[AuditEventBase]:
        """Security events are published synchronously unless asked otherwise."""
        fields = dict(
            event_type=event_type,
            description=description,
            user_id=user_id,
            risk_level=RiskLevel.HIGH,
            request_context=request_context,
        )
        return await self._build_and_emit(SecurityEvent, synchronous, fields, extra)

    async def system_event(
        self,
        message: str,
        event_type: AuditEventType = AuditEventType.SYSTEM_INFO,
        error_details: Optional[str] = None,
        synchronous: bool = False,
        **extra,
    ) -> Optional[AuditEventBase]:
        fields = dict(
            event_type=event_type,
            message=message,
            error_details=error_details,
            risk_level=RiskLevel.HIGH if event_type == AuditEventType.SYSTEM_ERROR else RiskLevel.LOW,
        )
        return await self._build_and_emit(SystemEvent, synchronous, fields, extra)
