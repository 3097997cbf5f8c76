from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trilha.audit.application.audit_health_service import HealthStatus
from trilha.audit.infrastructure.event_bus import InMemoryEventBus
from trilha.main import lifespan as lifespan_module
from trilha.main.exceptions import ConfigurationError, NotReadyException
from trilha.main.lifespan import Lifespan, run_lifespan


@pytest.fixture
def patched():
    job_manager = MagicMock()
    job_manager.init = AsyncMock()
    job_manager.close = AsyncMock()
    sessionmanager = MagicMock()
    sessionmanager.close = AsyncMock()

    with (
        patch("trilha.main.lifespan.job_manager", job_manager),
        patch("trilha.main.lifespan.sessionmanager", sessionmanager),
        patch("trilha.main.lifespan.event_bus", InMemoryEventBus()),
    ):
        yield job_manager, sessionmanager


def test_pipeline_is_not_available_before_startup():
    with pytest.raises(NotReadyException):
        Lifespan().pipeline


@pytest.mark.asyncio
async def test_startup_initializes_dependencies_once(patched, test_settings):
    job_manager, sessionmanager = patched
    lifespan = Lifespan()

    await lifespan.startup()
    pipeline = lifespan.pipeline
    await lifespan.shutdown()
    # A second startup reuses the pipeline instead of subscribing again
    await lifespan.startup()

    assert lifespan.pipeline is pipeline
    sessionmanager.init.assert_called_with(test_settings.database_url)
    assert job_manager.init.await_count == 2

    await lifespan.shutdown()
    assert job_manager.close.await_count == 2
    assert sessionmanager.close.await_count == 2


@pytest.mark.asyncio
async def test_startup_refuses_to_run_without_a_signing_key(patched, test_settings):
    settings = test_settings.model_copy(update={"audit_signing_key": None, "jwt_secret": None})

    with patch("trilha.main.lifespan.get_settings", return_value=settings):
        with pytest.raises(ConfigurationError):
            await Lifespan().startup()


@pytest.mark.asyncio
async def test_health_check_reads_the_running_pipeline(patched, fake_redis):
    job_manager, sessionmanager = patched
    job_manager.is_ready = True
    job_manager.redis = fake_redis
    session = MagicMock()
    session.execute = AsyncMock()
    sessionmanager.session.return_value.__aenter__.return_value = session

    lifespan = Lifespan()
    await lifespan.startup()
    try:
        lifespan.pipeline.dispatcher.stats.failed = 1
        report = await lifespan.check_health()
    finally:
        await lifespan.shutdown()

    session.execute.assert_awaited_once()
    assert report.components["database"].status == HealthStatus.HEALTHY
    assert report.components["processor"].status == HealthStatus.CRITICAL
    assert report.status == HealthStatus.CRITICAL


@pytest.mark.asyncio
async def test_run_lifespan_shuts_down_when_the_block_fails():
    pipeline = MagicMock()
    running = lifespan_module.lifespan

    with (
        patch.object(running, "startup", AsyncMock()) as startup,
        patch.object(running, "shutdown", AsyncMock()) as shutdown,
        patch.object(running, "_pipeline", pipeline),
    ):
        with pytest.raises(RuntimeError):
            async with run_lifespan() as yielded:
                assert yielded is pipeline
                raise RuntimeError("interrupted")

    startup.assert_awaited_once()
    shutdown.assert_awaited_once()
