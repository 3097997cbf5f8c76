"""Capture point for request-level audit events.

A single request can be observed by several layers (route, service, repository
hook). Only the first observation is emitted; the rest are recognised through
the deduplication cache and dropped.
"""

from typing import Optional

from trilha.audit.application.audit_event_emitter import AuditEventEmitter, EventInput
from trilha.audit.domain.events import AuditEventBase, parse_audit_event
from trilha.audit.infrastructure.request_deduplication import (
    RequestDeduplicationCache,
    RequestSnapshot,
    request_fingerprint,
)
from trilha.main.logging import get_logger
from trilha.main.request_context import bound_request_context

logger = get_logger(__name__)


class RequestAuditCapture:
    def __init__(self, emitter: AuditEventEmitter, dedup_cache: RequestDeduplicationCache):
        self.emitter = emitter
        self.dedup_cache = dedup_cache

    async def capture(self, event: EventInput, synchronous: bool = False) -> bool:
        """Emit the event unless the same request was already captured.

        Events without a request context (no endpoint or method) cannot be
        fingerprinted and are always emitted.

        Returns:
            True if the event was handed to the emitter, False if it was a duplicate
            or was rejected as invalid.
        """
        if isinstance(event, AuditEventBase):
            snapshot: Optional[RequestSnapshot] = RequestSnapshot.from_event(event)
        else:
            try:
                event = parse_audit_event(event)
            except ValueError:
                # Let the emitter log the rejection in its usual shape
                return await self.emitter.emit(event, synchronous=synchronous) is not None
            snapshot = RequestSnapshot.from_event(event)

        # Log lines from every layer handling this request share its fingerprint
        correlation_id = request_fingerprint(snapshot) if snapshot is not None else None
        with bound_request_context(correlation_id=correlation_id):
            if snapshot is not None and not self.dedup_cache.check_and_mark(snapshot):
                logger.debug(
                    "Duplicate request capture skipped",
                    extra={"endpoint": snapshot.url, "method": snapshot.method},
                )
                return False

            return await self.emitter.emit(event, synchronous=synchronous) is not None
