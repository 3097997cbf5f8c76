"""In-process publish/subscribe bus for audit events.

Delivery is at-least-once within the process: every handler subscribed to a
topic receives each payload published on it. Handlers run concurrently and
independently, and a failing handler is logged without affecting its
siblings or the publisher.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from trilha.main.exceptions import DuplicateRegistrationError
from trilha.main.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]


@dataclass
class HandlerRegistration:
    topic: str
    name: str
    handler: EventHandler
    handler_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PublishResult:
    topic: str
    delivered: int = 0
    failed: list[str] = field(default_factory=list)


class InMemoryEventBus:
    def __init__(self):
        self._registrations: dict[str, list[HandlerRegistration]] = {}

    def subscribe(self, topic: str, handler: EventHandler, name: str | None = None) -> str:
        """Subscribe a handler to a topic and return its handler id.

        Names are unique per topic. Subscribing the same name twice would
        deliver every event twice, so it is rejected.
        """
        name = name or getattr(handler, "__qualname__", repr(handler))
        registrations = self._registrations.setdefault(topic, [])
        if any(registration.name == name for registration in registrations):
            raise DuplicateRegistrationError(f"{topic}:{name}")

        registration = HandlerRegistration(topic=topic, name=name, handler=handler)
        registrations.append(registration)
        logger.debug("Subscribed %s to %s", name, topic)
        return registration.handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        for registrations in self._registrations.values():
            for registration in registrations:
                if registration.handler_id == handler_id:
                    registrations.remove(registration)
                    return True
        return False

    def handler_names(self, topic: str) -> list[str]:
        return [registration.name for registration in self._registrations.get(topic, [])]

    async def _deliver(self, registration: HandlerRegistration, payload: Any) -> bool:
        try:
            await registration.handler(payload)
            return True
        except Exception:
            logger.exception(
                "Audit event handler failed",
                extra={"topic": registration.topic, "handler": registration.name},
            )
            return False

    async def publish(self, topic: str, payload: Any) -> PublishResult:
        registrations = list(self._registrations.get(topic, []))
        result = PublishResult(topic=topic)
        if not registrations:
            return result

        outcomes = await asyncio.gather(
            *(self._deliver(registration, payload) for registration in registrations)
        )
        for registration, delivered in zip(registrations, outcomes):
            if delivered:
                result.delivered += 1
            else:
                result.failed.append(registration.name)
        return result


event_bus = InMemoryEventBus()


class NotificationOutbox:
    """Holds notifications back until the transaction that produced them commits.

    Messages are queued with `add` while the unit of work is open. The owner of
    the transaction calls `flush` after commit, or `discard` when the work is
    rolled back, so subscribers never hear about records that were not stored.
    """

    def __init__(self, event_bus: InMemoryEventBus):
        self.event_bus = event_bus
        self._pending: list[tuple[str, Any]] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, topic: str, payload: Any) -> None:
        self._pending.append((topic, payload))

    def discard(self) -> int:
        dropped = len(self._pending)
        self._pending = []
        return dropped

    async def flush(self) -> int:
        pending, self._pending = self._pending, []
        for topic, payload in pending:
            try:
                await self.event_bus.publish(topic, payload)
            except Exception:
                logger.exception("Failed to publish audit notification", extra={"topic": topic})
        return len(pending)
