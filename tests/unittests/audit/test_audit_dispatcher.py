"""Unit tests for queue-first dispatch with synchronous fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from trilha.audit.application.audit_dispatcher import AuditDispatcher
from trilha.audit.domain.audit_job import AuditJobPriority
from trilha.audit.domain.audit_log import AuditLogDraft
from trilha.audit.domain.risk_level import RiskLevel
from trilha.jobs.job_models import Task
from trilha.main.exceptions import AuditValidationError, NotReadyException


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(AuditDispatcher._enqueue.retry, "wait", wait_none())


@pytest.fixture
def job_manager():
    manager = MagicMock()
    manager.is_ready = True
    manager.enqueue = AsyncMock()
    return manager


@pytest.fixture
def sync_writer():
    return AsyncMock(return_value="stored")


@pytest.fixture
def batch_writer():
    return AsyncMock(side_effect=lambda job: [f"stored-{i}" for i in range(len(job.drafts))])


@pytest.fixture
def dispatcher(job_manager, sync_writer, batch_writer) -> AuditDispatcher:
    return AuditDispatcher(job_manager, sync_writer=sync_writer, batch_writer=batch_writer)


def make_draft(**overrides) -> AuditLogDraft:
    values = {"operation_type": "update", "affected_entity": "Usuario", "affected_entity_id": "42"}
    values.update(overrides)
    return AuditLogDraft(**values)


@pytest.mark.asyncio
async def test_draft_is_queued_when_the_queue_is_ready(dispatcher, job_manager, sync_writer):
    result = await dispatcher.dispatch(make_draft(risk_level=RiskLevel.HIGH))

    assert result is None
    sync_writer.assert_not_awaited()
    job_manager.enqueue.assert_awaited_once()

    task, job_id, params = job_manager.enqueue.await_args.args
    assert task == Task.LOG_AUDIT_EVENT
    assert params["job_id"] == str(job_id)
    assert params["kind"] == "single"
    assert params["drafts"][0]["affected_entity"] == "Usuario"
    assert job_manager.enqueue.await_args.kwargs["priority"] == AuditJobPriority.HIGH
    assert dispatcher.stats.queued == 1
    assert dispatcher.stats.synchronous == 0


@pytest.mark.asyncio
async def test_falls_back_to_synchronous_write_when_enqueue_keeps_failing(
    dispatcher, job_manager, sync_writer
):
    job_manager.enqueue.side_effect = ConnectionError("redis down")

    result = await dispatcher.dispatch(make_draft())

    assert result == "stored"
    assert job_manager.enqueue.await_count == 3
    sync_writer.assert_awaited_once()
    assert dispatcher.stats.queued == 0
    assert dispatcher.stats.synchronous == 1


@pytest.mark.asyncio
async def test_enqueue_is_retried_before_falling_back(dispatcher, job_manager, sync_writer):
    job_manager.enqueue.side_effect = [ConnectionError("blip"), None]

    assert await dispatcher.dispatch(make_draft()) is None

    assert job_manager.enqueue.await_count == 2
    sync_writer.assert_not_awaited()


@pytest.mark.asyncio
async def test_not_ready_is_not_retried(dispatcher, job_manager, sync_writer):
    job_manager.enqueue.side_effect = NotReadyException("Job manager is not initialized!")

    await dispatcher.dispatch(make_draft())

    assert job_manager.enqueue.await_count == 1
    sync_writer.assert_awaited_once()


@pytest.mark.asyncio
async def test_writes_synchronously_when_queue_is_not_ready(dispatcher, job_manager, sync_writer):
    job_manager.is_ready = False

    await dispatcher.dispatch(make_draft())

    job_manager.enqueue.assert_not_awaited()
    sync_writer.assert_awaited_once()


@pytest.mark.asyncio
async def test_writes_synchronously_when_queue_is_disabled(job_manager, sync_writer):
    dispatcher = AuditDispatcher(job_manager, sync_writer=sync_writer, queue_enabled=False)

    await dispatcher.dispatch(make_draft())

    job_manager.enqueue.assert_not_awaited()
    sync_writer.assert_awaited_once()


@pytest.mark.asyncio
async def test_each_draft_takes_exactly_one_path(dispatcher, job_manager, sync_writer):
    await dispatcher.dispatch(make_draft())
    job_manager.is_ready = False
    await dispatcher.dispatch(make_draft())

    assert job_manager.enqueue.await_count == 1
    assert sync_writer.await_count == 1


@pytest.mark.asyncio
async def test_synchronous_failures_are_counted_and_raised(dispatcher, job_manager, sync_writer):
    job_manager.is_ready = False
    sync_writer.side_effect = AuditValidationError("bad draft")

    with pytest.raises(AuditValidationError):
        await dispatcher.dispatch(make_draft())

    assert dispatcher.stats.failed == 1


@pytest.mark.asyncio
async def test_batch_is_queued_as_one_job(dispatcher, job_manager):
    drafts = [make_draft(risk_level=RiskLevel.LOW), make_draft(risk_level=RiskLevel.MEDIUM)]

    assert await dispatcher.dispatch_batch(drafts, compress=True, sign=True) is None

    task, _, params = job_manager.enqueue.await_args.args
    assert task == Task.LOG_AUDIT_BATCH
    assert params["kind"] == "batch"
    assert params["compress"] is True
    assert params["sign"] is True
    assert len(params["drafts"]) == 2
    assert job_manager.enqueue.await_args.kwargs["priority"] == AuditJobPriority.NORMAL
    assert dispatcher.stats.queued == 2


@pytest.mark.asyncio
async def test_batch_falls_back_to_synchronous_write(dispatcher, job_manager, batch_writer):
    job_manager.is_ready = False

    created = await dispatcher.dispatch_batch([make_draft(), make_draft()], sign=True)

    assert created == ["stored-0", "stored-1"]
    job = batch_writer.await_args.args[0]
    assert job.sign is True
    assert dispatcher.stats.synchronous == 2
