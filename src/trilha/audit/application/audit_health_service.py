"""Health checks for the audit pipeline.

Each component (database, Redis, queue, worker, dead letters, processor) is
checked independently. A check that raises reports its component as critical
instead of failing the whole report.
"""

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
import sqlalchemy as sa
from arq.constants import default_queue_name, health_check_key_suffix
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trilha.audit.application.audit_dispatcher import DispatchStats
from trilha.audit.infrastructure.dead_letter_store import DeadLetterStore
from trilha.main.config import Settings
from trilha.main.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.CRITICAL: 2}


def worst(statuses) -> HealthStatus:
    return max(statuses, key=_SEVERITY.__getitem__, default=HealthStatus.HEALTHY)


class ComponentHealth(BaseModel):
    status: HealthStatus
    message: str
    response_time_ms: Optional[float] = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthThresholds(BaseModel):
    queue_warning: int = 100
    queue_critical: int = 500
    error_rate_warning: float = 0.05
    error_rate_critical: float = 0.15
    response_time_warning_ms: float = 1000
    response_time_critical_ms: float = 3000

    @classmethod
    def from_settings(cls, settings: Settings) -> "HealthThresholds":
        return cls(
            queue_warning=settings.audit_health_queue_warning,
            queue_critical=settings.audit_health_queue_critical,
            error_rate_warning=settings.audit_health_error_rate_warning,
            error_rate_critical=settings.audit_health_error_rate_critical,
            response_time_warning_ms=settings.audit_health_response_time_warning_ms,
            response_time_critical_ms=settings.audit_health_response_time_critical_ms,
        )

    def grade(self, value: float, warning: float, critical: float) -> HealthStatus:
        if value > critical:
            return HealthStatus.CRITICAL
        if value > warning:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY


class AuditHealthReport(BaseModel):
    status: HealthStatus
    checked_at: datetime
    components: dict[str, ComponentHealth]
    metrics: dict[str, float]
    alerts: list[str]


def error_rate(stats: DispatchStats) -> float:
    total = stats.queued + stats.synchronous + stats.failed
    return stats.failed / total if total else 0.0


class AuditHealthService:
    """Builds an AuditHealthReport from live checks of the pipeline's dependencies.

    Args:
        session: Database session used for the connectivity check
        redis: Redis client of the queue, or None when the queue is disabled
        dispatch_stats: Counters of the running dispatcher, if any
        queue_enabled: Whether the queue is expected to be in use
        thresholds: Warning and critical limits
    """

    def __init__(
        self,
        session: AsyncSession,
        redis: Optional[aioredis.Redis] = None,
        dispatch_stats: Optional[DispatchStats] = None,
        queue_enabled: bool = True,
        thresholds: Optional[HealthThresholds] = None,
    ):
        self.session = session
        self.redis = redis
        self.dispatch_stats = dispatch_stats
        self.queue_enabled = queue_enabled
        self.thresholds = thresholds or HealthThresholds()

    def _by_response_time(self, name: str, elapsed_ms: float) -> ComponentHealth:
        status = self.thresholds.grade(
            elapsed_ms,
            self.thresholds.response_time_warning_ms,
            self.thresholds.response_time_critical_ms,
        )
        return ComponentHealth(
            status=status,
            message=f"{name} responded in {elapsed_ms:.0f}ms",
            response_time_ms=elapsed_ms,
        )

    async def check_database(self) -> ComponentHealth:
        started = time.perf_counter()
        await self.session.execute(sa.text("SELECT 1"))
        return self._by_response_time("PostgreSQL", (time.perf_counter() - started) * 1000)

    async def check_redis(self) -> ComponentHealth:
        started = time.perf_counter()
        await self.redis.ping()
        return self._by_response_time("Redis", (time.perf_counter() - started) * 1000)

    async def check_queue(self) -> ComponentHealth:
        depth = await self.redis.zcard(default_queue_name)
        status = self.thresholds.grade(
            depth, self.thresholds.queue_warning, self.thresholds.queue_critical
        )
        return ComponentHealth(
            status=status,
            message=f"{depth} audit jobs waiting",
            details={"queue_size": depth},
        )

    async def check_worker(self) -> ComponentHealth:
        # arq workers refresh this key every health_check_interval seconds
        heartbeat = await self.redis.get(default_queue_name + health_check_key_suffix)
        if heartbeat is None:
            return ComponentHealth(
                status=HealthStatus.DEGRADED,
                message="No worker heartbeat found, queued audit jobs are not being processed",
            )
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Worker is alive",
            details={"heartbeat": heartbeat.decode()},
        )

    async def check_dead_letters(self) -> ComponentHealth:
        parked = await DeadLetterStore(self.redis).count()
        if parked:
            return ComponentHealth(
                status=HealthStatus.DEGRADED,
                message=f"{parked} audit jobs parked and waiting for an operator",
                details={"parked": parked},
            )
        return ComponentHealth(
            status=HealthStatus.HEALTHY, message="No parked audit jobs", details={"parked": 0}
        )

    async def check_processor(self) -> ComponentHealth:
        stats = self.dispatch_stats
        if stats is None:
            return ComponentHealth(
                status=HealthStatus.HEALTHY, message="No dispatcher running in this process"
            )

        rate = error_rate(stats)
        status = self.thresholds.grade(
            rate, self.thresholds.error_rate_warning, self.thresholds.error_rate_critical
        )
        return ComponentHealth(
            status=status,
            message=f"Dispatch error rate {rate:.2%}",
            details={
                "queued": stats.queued,
                "synchronous": stats.synchronous,
                "failed": stats.failed,
                "error_rate": rate,
            },
        )

    async def _run(
        self, name: str, check: Callable[[], Awaitable[ComponentHealth]]
    ) -> ComponentHealth:
        try:
            return await check()
        except Exception as e:
            logger.warning(f"Health check for {name} failed", extra={"error": str(e)})
            return ComponentHealth(
                status=HealthStatus.CRITICAL,
                message=f"{name} check failed: {e}",
                details={"error": str(e)},
            )

    def _checks(self) -> dict[str, Callable[[], Awaitable[ComponentHealth]]]:
        checks = {"database": self.check_database, "processor": self.check_processor}
        if self.queue_enabled and self.redis is not None:
            checks.update(
                redis=self.check_redis,
                queue=self.check_queue,
                worker=self.check_worker,
                dead_letters=self.check_dead_letters,
            )
        elif self.queue_enabled:
            checks["redis"] = self._redis_unavailable
        return checks

    async def _redis_unavailable(self) -> ComponentHealth:
        return ComponentHealth(
            status=HealthStatus.CRITICAL,
            message="Queue is enabled but no Redis connection is available",
        )

    async def check(self) -> AuditHealthReport:
        checks = self._checks()
        results = await asyncio.gather(
            *(self._run(name, check) for name, check in checks.items())
        )
        components = dict(zip(checks, results))

        metrics: dict[str, float] = {}
        if self.dispatch_stats is not None:
            metrics["error_rate"] = error_rate(self.dispatch_stats)
        for name, key in (("queue", "queue_size"), ("dead_letters", "parked")):
            if name in components and key in components[name].details:
                metrics[key] = components[name].details[key]

        alerts = [
            f"{health.status.value.upper()}: {name} - {health.message}"
            for name, health in components.items()
            if health.status != HealthStatus.HEALTHY
        ]

        report = AuditHealthReport(
            status=worst(health.status for health in components.values()),
            checked_at=datetime.now(timezone.utc),
            components=components,
            metrics=metrics,
            alerts=alerts,
        )
        if report.status == HealthStatus.CRITICAL:
            logger.error("Audit pipeline is critical", extra={"alerts": alerts})
        return report
