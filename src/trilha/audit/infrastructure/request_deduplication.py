"""Process-local cache that collapses duplicate audit captures of one request.

A request is often observed by more than one capture point within a few
milliseconds. Captures of the same method, path, actor and ip inside the same
one-second window share a fingerprint, so only the first one is audited.

The cache is best effort. Clearing it at any time can at worst produce one
duplicate audit log, never a missing one.
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from trilha.audit.domain.events import AuditEventBase
from trilha.main.logging import get_logger

logger = get_logger(__name__)

FINGERPRINT_LENGTH = 32


@dataclass(frozen=True)
class RequestSnapshot:
    """The parts of a request that identify it for deduplication."""

    method: str
    url: str
    timestamp: datetime
    user_id: Optional[str] = None
    ip: Optional[str] = None

    @classmethod
    def from_event(cls, event: AuditEventBase) -> Optional["RequestSnapshot"]:
        context = event.request_context
        if context is None or not context.endpoint or not context.method:
            return None
        return cls(
            method=context.method,
            url=context.endpoint,
            timestamp=event.timestamp,
            user_id=event.user_id,
            ip=context.ip,
        )


@dataclass
class DeduplicationEntry:
    fingerprint: str
    first_seen_at: float
    processed: bool = True


def normalize_url(url: str) -> str:
    """Drop the query string and fragment."""
    return url.split("?", 1)[0].split("#", 1)[0]


def request_fingerprint(snapshot: RequestSnapshot) -> str:
    timestamp = snapshot.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    time_bucket = int(timestamp.timestamp())

    key = "|".join(
        (
            snapshot.method.upper(),
            normalize_url(snapshot.url),
            snapshot.user_id or "anonymous",
            snapshot.ip or "unknown",
            str(time_bucket),
        )
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class RequestDeduplicationCache:
    """TTL cache of processed request fingerprints.

    All access to the map goes through one lock. Critical sections are
    short and never await, so callers on the event loop are not stalled.
    Expired entries are removed by a background sweep and are also treated as
    absent on lookup.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        sweep_interval_seconds: int = 60,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, DeduplicationEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, entry: DeduplicationEntry, now: float) -> bool:
        return now - entry.first_seen_at >= self.ttl_seconds

    def _lookup(self, fingerprint: str, now: float) -> Optional[DeduplicationEntry]:
        entry = self._entries.get(fingerprint)
        if entry is not None and self._is_expired(entry, now):
            del self._entries[fingerprint]
            return None
        return entry

    def _store(self, fingerprint: str, now: float) -> None:
        self._entries[fingerprint] = DeduplicationEntry(fingerprint=fingerprint, first_seen_at=now)
        self._entries.move_to_end(fingerprint)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def is_duplicate(self, snapshot: RequestSnapshot) -> bool:
        fingerprint = request_fingerprint(snapshot)
        with self._lock:
            entry = self._lookup(fingerprint, self._clock())
            return entry is not None and entry.processed

    def mark_processed(self, snapshot: RequestSnapshot) -> str:
        fingerprint = request_fingerprint(snapshot)
        with self._lock:
            now = self._clock()
            if self._lookup(fingerprint, now) is None:
                self._store(fingerprint, now)
        return fingerprint

    def check_and_mark(self, snapshot: RequestSnapshot) -> bool:
        """Mark the request as processed. Returns False if it already was."""
        fingerprint = request_fingerprint(snapshot)
        with self._lock:
            now = self._clock()
            if self._lookup(fingerprint, now) is not None:
                return False
            self._store(fingerprint, now)
            return True

    def sweep(self) -> int:
        """Remove expired entries and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(
                "Swept expired request fingerprints",
                extra={"removed": len(expired), "remaining": len(self)},
            )
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Request deduplication sweep failed")

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
