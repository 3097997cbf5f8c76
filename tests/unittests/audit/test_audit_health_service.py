"""Unit tests for audit pipeline health checks."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from arq.constants import default_queue_name, health_check_key_suffix
from redis.exceptions import ConnectionError as RedisConnectionError

from trilha.audit.application.audit_dispatcher import DispatchStats
from trilha.audit.application.audit_health_service import (
    AuditHealthService,
    HealthStatus,
    HealthThresholds,
    error_rate,
    worst,
)
from trilha.audit.domain.audit_job import AuditJobKind, AuditJobPriority
from trilha.audit.infrastructure.dead_letter_store import DeadLetterRecord, DeadLetterStore

THRESHOLDS = HealthThresholds(queue_warning=2, queue_critical=4)


@pytest.fixture
def session():
    session = MagicMock()
    session.execute = AsyncMock()
    return session


@pytest.fixture
def live_redis(fake_redis):
    fake_redis.store[default_queue_name + health_check_key_suffix] = b"j_complete=3 j_failed=0"
    return fake_redis


def service(session, redis, **overrides) -> AuditHealthService:
    values = dict(
        session=session,
        redis=redis,
        dispatch_stats=DispatchStats(queued=10),
        thresholds=THRESHOLDS,
    )
    values.update(overrides)
    return AuditHealthService(**values)


def queue_jobs(redis, count: int) -> None:
    redis.zsets[default_queue_name] = {f"job-{i}": float(i) for i in range(count)}


async def park_one(redis) -> None:
    await DeadLetterStore(redis).park(
        DeadLetterRecord(
            job_id=uuid4(),
            kind=AuditJobKind.SINGLE,
            failure_reason="database unavailable",
            error_type="TransientStorageError",
            attempts_made=3,
            max_attempts=3,
            priority=AuditJobPriority.NORMAL,
            retryable=True,
            payload={},
            first_enqueued_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
        )
    )


def test_worst_status_wins():
    assert worst([HealthStatus.HEALTHY, HealthStatus.CRITICAL, HealthStatus.DEGRADED]) == (
        HealthStatus.CRITICAL
    )
    assert worst([]) == HealthStatus.HEALTHY


def test_error_rate():
    assert error_rate(DispatchStats()) == 0.0
    assert error_rate(DispatchStats(queued=6, synchronous=2, failed=2)) == 0.2


def test_thresholds_follow_settings(test_settings):
    thresholds = HealthThresholds.from_settings(test_settings)

    assert thresholds.queue_warning == test_settings.audit_health_queue_warning
    assert thresholds.error_rate_critical == test_settings.audit_health_error_rate_critical


@pytest.mark.asyncio
async def test_all_components_healthy(session, live_redis):
    report = await service(session, live_redis).check()

    assert report.status == HealthStatus.HEALTHY
    assert set(report.components) == {
        "database",
        "redis",
        "queue",
        "worker",
        "dead_letters",
        "processor",
    }
    assert report.alerts == []
    assert report.metrics == {"error_rate": 0.0, "queue_size": 0, "parked": 0}
    session.execute.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "depth, expected",
    [(2, HealthStatus.HEALTHY), (3, HealthStatus.DEGRADED), (5, HealthStatus.CRITICAL)],
)
async def test_queue_depth_thresholds(session, live_redis, depth, expected):
    queue_jobs(live_redis, depth)

    report = await service(session, live_redis).check()

    assert report.components["queue"].status == expected
    assert report.metrics["queue_size"] == depth
    assert report.status == expected


@pytest.mark.asyncio
async def test_parked_jobs_degrade_the_pipeline(session, live_redis):
    await park_one(live_redis)

    report = await service(session, live_redis).check()

    assert report.components["dead_letters"].status == HealthStatus.DEGRADED
    assert report.metrics["parked"] == 1
    assert report.status == HealthStatus.DEGRADED
    assert report.alerts == [
        "DEGRADED: dead_letters - 1 audit jobs parked and waiting for an operator"
    ]


@pytest.mark.asyncio
async def test_missing_worker_heartbeat_is_degraded(session, fake_redis):
    report = await service(session, fake_redis).check()

    assert report.components["worker"].status == HealthStatus.DEGRADED


@pytest.mark.asyncio
async def test_high_dispatch_error_rate_is_critical(session, live_redis):
    stats = DispatchStats(queued=4, synchronous=0, failed=1)

    report = await service(session, live_redis, dispatch_stats=stats).check()

    assert report.components["processor"].status == HealthStatus.CRITICAL
    assert report.components["processor"].details["failed"] == 1
    assert report.metrics["error_rate"] == 0.2
    assert report.status == HealthStatus.CRITICAL


@pytest.mark.asyncio
async def test_database_failure_is_critical_and_other_checks_still_run(session, live_redis):
    session.execute.side_effect = ConnectionRefusedError("connection refused")

    report = await service(session, live_redis).check()

    assert report.components["database"].status == HealthStatus.CRITICAL
    assert "connection refused" in report.components["database"].message
    assert report.components["redis"].status == HealthStatus.HEALTHY
    assert report.status == HealthStatus.CRITICAL


@pytest.mark.asyncio
async def test_unreachable_redis_fails_every_redis_check(session, live_redis):
    live_redis.ping = AsyncMock(side_effect=RedisConnectionError("redis is down"))
    live_redis.zcard = AsyncMock(side_effect=RedisConnectionError("redis is down"))

    report = await service(session, live_redis).check()

    assert report.components["redis"].status == HealthStatus.CRITICAL
    assert report.components["queue"].status == HealthStatus.CRITICAL
    assert report.components["dead_letters"].status == HealthStatus.CRITICAL
    assert "queue_size" not in report.metrics


@pytest.mark.asyncio
async def test_slow_database_is_graded_by_response_time(session, live_redis):
    thresholds = HealthThresholds(response_time_warning_ms=-1, response_time_critical_ms=1e9)

    report = await service(session, live_redis, thresholds=thresholds).check()

    assert report.components["database"].status == HealthStatus.DEGRADED
    assert report.components["database"].response_time_ms >= 0


@pytest.mark.asyncio
async def test_queue_disabled_skips_redis_checks(session):
    report = await service(session, None, queue_enabled=False).check()

    assert set(report.components) == {"database", "processor"}
    assert report.status == HealthStatus.HEALTHY


@pytest.mark.asyncio
async def test_queue_enabled_without_redis_is_critical(session):
    report = await service(session, None).check()

    assert report.components["redis"].status == HealthStatus.CRITICAL
    assert report.status == HealthStatus.CRITICAL
