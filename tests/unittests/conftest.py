import dataclasses
import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.operation_types import OperationType
from trilha.audit.domain.reports import (
    AuditLogQuery,
    AuditStatistics,
    SensitiveAccessReport,
)
from trilha.audit.domain.repositories.audit_log_repository import AuditLogRepository
from trilha.audit.domain.repositories.signature_repository import AuditSignatureRepository
from trilha.audit.domain.signature import SignatureRecord
from trilha.main.config import Settings, reset_settings, set_settings

SIGNING_KEY = "unit-test-audit-signing-key-0123456789abcdef"


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values for unit tests.

    This provides a clean, isolated configuration that doesn't depend on
    .env file or environment variables.
    """
    return Settings(
        # Minimal database settings (not used in unit tests)
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",

        # Redis settings (not used in unit tests)
        redis_host="localhost",
        redis_port=6379,

        # Security
        audit_signing_key=SIGNING_KEY,
        jwt_secret=None,

        # Audit queue
        audit_queue_enabled=True,
        audit_queue_max_attempts=3,
        audit_retry_base_delay_seconds=2.0,
        audit_retry_max_delay_seconds=300.0,

        # Testing mode
        testing=True,
        dev=True,
    )


@pytest.fixture(autouse=True)
def use_test_settings(test_settings: Settings):
    """Install the test settings and reset them after each test to prevent state leakage."""
    set_settings(test_settings)
    yield
    reset_settings()


class FakeAuditLogRepository(AuditLogRepository):
    """In-memory audit log repository.

    Set ``fail_with`` to make the next writes raise, for example a
    TransientStorageError to simulate a database outage.
    """

    def __init__(self):
        self.logs: dict[uuid.UUID, AuditLog] = {}
        self.fail_with: Optional[Exception] = None
        self.create_calls = 0

    def _stamp(self, audit_log: AuditLog) -> AuditLog:
        audit_log = dataclasses.replace(audit_log, created_at=datetime.now(timezone.utc))
        self.logs[audit_log.id] = audit_log
        return audit_log

    async def create(self, audit_log: AuditLog) -> AuditLog:
        self.create_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self._stamp(audit_log)

    async def create_many(self, audit_logs: list[AuditLog]) -> list[AuditLog]:
        self.create_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return [self._stamp(audit_log) for audit_log in audit_logs]

    async def get_by_id(self, audit_log_id: uuid.UUID) -> Optional[AuditLog]:
        return self.logs.get(audit_log_id)

    async def find(self, query: AuditLogQuery) -> tuple[list[AuditLog], int]:
        matches = [
            log
            for log in self.logs.values()
            if (query.operation_type is None or log.operation_type == query.operation_type)
            and (query.affected_entity is None or log.affected_entity == query.affected_entity)
            and (query.user_id is None or log.user_id == query.user_id)
            and (query.lgpd_relevant is None or log.lgpd_relevant == query.lgpd_relevant)
        ]
        matches.sort(key=lambda log: (log.occurred_at, str(log.id)), reverse=True)
        start = (query.page - 1) * query.page_size
        return matches[start : start + query.page_size], len(matches)

    async def find_by_entity(self, affected_entity, affected_entity_id=None, limit=100):
        return [
            log
            for log in self.logs.values()
            if log.affected_entity == affected_entity
            and (affected_entity_id is None or log.affected_entity_id == affected_entity_id)
        ][:limit]

    async def find_by_user(self, user_id, limit=100):
        return [log for log in self.logs.values() if log.user_id == user_id][:limit]

    async def sensitive_access_report(self, from_date, to_date):
        report = SensitiveAccessReport(from_date=from_date, to_date=to_date, total_accesses=0)
        for log in self.logs.values():
            if not log.sensitive_fields_accessed or not from_date <= log.occurred_at <= to_date:
                continue
            report.total_accesses += 1
            user = log.user_id or "anonymous"
            report.by_user[user] = report.by_user.get(user, 0) + 1
            for field in log.sensitive_fields_accessed:
                report.by_field[field] = report.by_field.get(field, 0) + 1
        return report

    async def get_statistics(self, from_date=None, to_date=None, top=10):
        stats = AuditStatistics(total_events=len(self.logs))
        for log in self.logs.values():
            key = log.operation_type.value
            stats.events_by_operation[key] = stats.events_by_operation.get(key, 0) + 1
        stats.lgpd_events = sum(1 for log in self.logs.values() if log.lgpd_relevant)
        return stats


class FakeSignatureRepository(AuditSignatureRepository):
    def __init__(self):
        self.signatures: dict[uuid.UUID, SignatureRecord] = {}

    async def save_many(self, signatures: list[SignatureRecord]) -> None:
        for signature in signatures:
            self.signatures[signature.log_id] = signature

    async def get(self, log_id: uuid.UUID) -> Optional[SignatureRecord]:
        return self.signatures.get(log_id)

    async def get_many(self, log_ids: list[uuid.UUID]) -> dict[uuid.UUID, SignatureRecord]:
        return {log_id: self.signatures[log_id] for log_id in log_ids if log_id in self.signatures}


class FakeRedis:
    """Minimal Redis stub covering the commands used by the dead-letter store
    and the health checks."""

    def __init__(self):
        self.store: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    async def setex(self, key: str, ttl: int, value: bytes) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    async def get(self, key: str) -> Optional[bytes]:
        return self.store.get(key)

    async def delete(self, key: str) -> int:
        existed = key in self.store
        self.store.pop(key, None)
        self.ttls.pop(key, None)
        return int(existed)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrevrange(self, key: str, start: int, end: int) -> list[bytes]:
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1], reverse=True)
        return [member.encode() for member, _ in members[start : end + 1]]

    async def zrem(self, key: str, member: str) -> int:
        return int(self.zsets.get(key, {}).pop(member, None) is not None)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def ping(self) -> bool:
        return True


@pytest.fixture
def audit_log_repo() -> FakeAuditLogRepository:
    return FakeAuditLogRepository()


@pytest.fixture
def signature_repo() -> FakeSignatureRepository:
    return FakeSignatureRepository()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def make_audit_log():
    def _make(**overrides) -> AuditLog:
        values = dict(
            id=uuid.uuid4(),
            operation_type=OperationType.UPDATE,
            affected_entity="Usuario",
            affected_entity_id="42",
            user_id="7",
            endpoint="/api/usuarios/42",
            http_method="PUT",
            source_ip="10.0.0.1",
            occurred_at=datetime(2026, 3, 2, 14, 30, 15, 123456, tzinfo=timezone.utc),
        )
        values.update(overrides)
        return AuditLog(**values)

    return _make
