"""
Infrastructure components for background processing.

BackgroundWorkerPool runs DSAR automated processing outside the request
that triggered it.
"""

from __future__ import annotations

from consenthub.infra.background_worker import BackgroundWorkerPool, Task, TaskStatus, TaskType

__all__ = ["BackgroundWorkerPool", "Task", "TaskStatus", "TaskType"]
