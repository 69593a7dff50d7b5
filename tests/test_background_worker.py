"""Tests for the background worker pool and the DSAR task handler wiring."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from consenthub.config import Settings
from consenthub.infra.background_worker import BackgroundWorkerPool, TaskStatus, TaskType
from consenthub.main import build_worker_pool


@pytest.fixture
async def pool():
    p = BackgroundWorkerPool(max_workers=2)
    yield p
    await p.shutdown(drain=False)


class TestBackgroundWorkerPool:
    async def test_submit_requires_registered_handler(self, pool: BackgroundWorkerPool) -> None:
        with pytest.raises(ValueError, match="No handler registered"):
            await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={})

    async def test_task_runs_and_records_result(self, pool: BackgroundWorkerPool) -> None:
        handler = AsyncMock(return_value="completed")
        pool.register_handler(TaskType.DSAR_AUTO_PROCESS, handler)
        await pool.start()

        task_id = await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={"dsar_id": "x"})
        await pool.join()

        task = pool.get_task_status(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "completed"
        assert handler.await_args.args[0].payload == {"dsar_id": "x"}

    async def test_failed_task_is_recorded_and_not_retried(self, pool: BackgroundWorkerPool) -> None:
        handler = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])
        pool.register_handler(TaskType.DSAR_AUTO_PROCESS, handler)
        await pool.start()

        failed_id = await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={})
        await pool.join()

        failed = pool.get_task_status(failed_id)
        assert failed.status == TaskStatus.FAILED
        assert failed.error == "boom"
        assert failed.completed_at is not None
        assert handler.await_count == 1

        # The pool keeps serving after a failure
        next_id = await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={})
        await pool.join()
        assert pool.get_task_status(next_id).status == TaskStatus.COMPLETED
        assert handler.await_count == 2

    async def test_stopped_pool_refuses_tasks(self, pool: BackgroundWorkerPool) -> None:
        pool.register_handler(TaskType.DSAR_AUTO_PROCESS, AsyncMock())
        assert pool.accepts(TaskType.DSAR_AUTO_PROCESS) is False
        with pytest.raises(RuntimeError, match="not running"):
            await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={})

        await pool.start()
        assert pool.accepts(TaskType.DSAR_AUTO_PROCESS) is True

    async def test_unknown_task_status(self, pool: BackgroundWorkerPool) -> None:
        assert pool.get_task_status("missing") is None

    async def test_shutdown_drains_queue(self, pool: BackgroundWorkerPool) -> None:
        done = asyncio.Event()

        async def _slow(task):
            await asyncio.sleep(0.01)
            done.set()

        pool.register_handler(TaskType.DSAR_AUTO_PROCESS, _slow)
        await pool.start()
        await pool.submit_task(task_type=TaskType.DSAR_AUTO_PROCESS, payload={})
        await pool.shutdown(drain=True)

        assert done.is_set()
        assert pool.running is False


class TestDSARHandlerWiring:
    async def test_handler_passes_dsar_id_to_processor(self, settings: Settings, session_factory) -> None:
        processor = AsyncMock()
        processor.process = AsyncMock(return_value="completed")
        pool = build_worker_pool(settings, session_factory, processor)
        await pool.start()
        try:
            dsar_id = "2b1f5a4e-64a4-4bd0-9d3e-5f0b1c2d3e4f"
            task_id = await pool.submit_task(
                task_type=TaskType.DSAR_AUTO_PROCESS,
                payload={"dsar_id": dsar_id},
            )
            await pool.join()
        finally:
            await pool.shutdown()

        assert str(processor.process.await_args.args[0]) == dsar_id
        assert pool.get_task_status(task_id).result == "completed"
