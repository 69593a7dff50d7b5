"""
Background worker pool for asynchronous DSAR processing.

Provides an asyncio-based task queue so that slow work (automated DSAR
processing) never runs on a request coroutine. Tasks are tracked through
PENDING -> RUNNING -> COMPLETED/FAILED.

Key features:
- Configurable concurrency (max_workers)
- Handlers registered per task type
- One attempt per task; failures are recorded, never retried
- No cancellation once submitted
- Graceful shutdown with task draining
- Task status tracking for client polling

Design:
- Uses asyncio.Queue for work distribution
- Each worker is a long-running coroutine
- Task state is stored in-memory (single-instance deployment)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class TaskStatus(StrEnum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(StrEnum):
    """Known background task types."""
    DSAR_AUTO_PROCESS = "dsar_auto_process"


@dataclass
class Task:
    """Represents a background task with lifecycle tracking."""
    type: TaskType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    payload: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    result: Any = None


TaskHandler = Callable[[Task], Awaitable[Any]]


class BackgroundWorkerPool:
    """
    Asyncio-based background task processor with concurrency control.

    Manages a pool of worker coroutines that pull tasks from a queue,
    dispatch them to the handler registered for their type, and track
    their lifecycle.

    Example usage:
        pool = BackgroundWorkerPool(max_workers=4)
        pool.register_handler(TaskType.DSAR_AUTO_PROCESS, handle_auto_process)
        await pool.start()

        task_id = await pool.submit_task(
            task_type=TaskType.DSAR_AUTO_PROCESS,
            payload={"dsar_id": "..."},
        )

        status = pool.get_task_status(task_id)
        await pool.shutdown()
    """

    def __init__(self, *, max_workers: int = 4) -> None:
        """
        Initialize the worker pool.

        Args:
            max_workers: Maximum number of concurrent worker coroutines
        """
        self._max_workers = max_workers
        self._queue: asyncio.Queue[Task] = asyncio.Queue()
        self._tasks: dict[str, Task] = {}
        self._handlers: dict[TaskType, TaskHandler] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._shutdown_event = asyncio.Event()
        self._running = False

        log.info("worker_pool.initialized", max_workers=max_workers)

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, task_type: TaskType, handler: TaskHandler) -> None:
        self._handlers[task_type] = handler

    def accepts(self, task_type: TaskType) -> bool:
        """True if submit_task would take a task of this type right now."""
        return self._running and task_type in self._handlers

    async def start(self) -> None:
        """Start worker coroutines."""
        if self._running:
            log.warning("worker_pool.already_running")
            return

        self._running = True
        self._shutdown_event.clear()

        for i in range(self._max_workers):
            worker = asyncio.create_task(self._worker_loop(worker_id=i))
            self._workers.append(worker)

        log.info("worker_pool.started", worker_count=self._max_workers)

    async def shutdown(self, *, drain: bool = True) -> None:
        """
        Shutdown the worker pool.

        Args:
            drain: If True, wait for queued and in-flight tasks to complete.
                   If False, stop the workers immediately.
        """
        if not self._running:
            return

        log.info("worker_pool.shutdown_initiated", drain=drain)

        if drain:
            # Workers must still be running to drain the queue
            await self._queue.join()

        self._running = False
        self._shutdown_event.set()

        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers.clear()
        log.info(
            "worker_pool.shutdown_complete",
            tasks_completed=len([t for t in self._tasks.values() if t.status == TaskStatus.COMPLETED]),
            tasks_failed=len([t for t in self._tasks.values() if t.status == TaskStatus.FAILED]),
        )

    async def join(self) -> None:
        """Wait until every submitted task has been processed."""
        await self._queue.join()

    async def submit_task(self, *, task_type: TaskType, payload: dict[str, Any]) -> str:
        """
        Submit a task to the background queue.

        Args:
            task_type: Type of task to execute
            payload: Task-specific data (must be JSON-serializable)

        Returns:
            Task ID for status tracking

        Raises:
            ValueError: no handler is registered for task_type
            RuntimeError: the pool is not running
        """
        if task_type not in self._handlers:
            raise ValueError(f"No handler registered for task type: {task_type}")
        if not self._running:
            raise RuntimeError("Worker pool is not running")

        task = Task(type=task_type, payload=payload)

        self._tasks[task.id] = task
        await self._queue.put(task)

        log.info(
            "worker_pool.task_submitted",
            task_id=task.id,
            task_type=task_type,
            queue_size=self._queue.qsize(),
        )
        return task.id

    def get_task_status(self, task_id: str) -> Task | None:
        """
        Get current status of a task.

        Returns None if task ID not found.
        """
        return self._tasks.get(task_id)

    async def _worker_loop(self, worker_id: int) -> None:
        """
        Worker coroutine that processes tasks from the queue.

        Runs until shutdown_event is set.
        """
        log.info("worker.started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                # Wait for task with timeout to check shutdown periodically
                task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                await self._execute_task(task, worker_id=worker_id)
            finally:
                self._queue.task_done()

        log.info("worker.stopped", worker_id=worker_id)

    async def _execute_task(self, task: Task, worker_id: int) -> None:
        """Run a task's handler once and record the outcome."""
        task.status = TaskStatus.RUNNING
        task.started_at = datetime.now(UTC)

        log.info(
            "worker.task_started",
            worker_id=worker_id,
            task_id=task.id,
            task_type=task.type,
        )

        try:
            handler = self._handlers[task.type]
            task.result = await handler(task)
        except Exception as exc:
            # Handlers own their domain failure handling; this only records it
            task.status = TaskStatus.FAILED
            task.error = str(exc)
            task.completed_at = datetime.now(UTC)
            log.error(
                "worker.task_failed",
                worker_id=worker_id,
                task_id=task.id,
                error=str(exc),
            )
            return

        task.status = TaskStatus.COMPLETED
        task.completed_at = datetime.now(UTC)
        log.info(
            "worker.task_completed",
            worker_id=worker_id,
            task_id=task.id,
            duration_seconds=(task.completed_at - task.started_at).total_seconds(),
        )
