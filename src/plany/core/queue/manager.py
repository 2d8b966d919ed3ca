from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from plany.core.errors import NotFound, PlanyError
from plany.core.logging import log_context

from .schemas import QueuedTask, TaskKind, TaskStatus
from .store import TaskQueueStore

TaskHandler = Callable[[QueuedTask], Awaitable[str | None]]


class BackgroundTaskQueue:
    """Durable enrichment queue. One in-flight attempt per task id, retried with exponential backoff."""

    def __init__(
        self,
        store: TaskQueueStore,
        *,
        max_retries: int = 3,
        base_delay_s: float = 2.0,
        retention: timedelta = timedelta(days=7),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.max_retries = max(1, max_retries)
        self.base_delay_s = base_delay_s
        self.retention = retention
        self._sleep = sleep
        self._tasks: dict[str, QueuedTask] = {task.id: task for task in store.load()}
        self._handlers: dict[TaskKind, TaskHandler] = {}
        self._active: dict[str, asyncio.Task[None]] = {}
        self._persist_lock = asyncio.Lock()
        self.logger = logging.getLogger("plany.queue")

    def register(self, kind: TaskKind, handler: TaskHandler) -> None:
        self._handlers[kind] = handler

    def get(self, task_id: str) -> QueuedTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self, status: TaskStatus | None = None) -> list[QueuedTask]:
        tasks = [task for task in self._tasks.values() if status is None or task.status == status]
        return sorted(tasks, key=lambda task: task.created_at, reverse=True)

    def retry_delay(self, retry_count: int) -> float:
        return self.base_delay_s * (2 ** (retry_count - 1))

    async def enqueue(self, kind: TaskKind, payload: dict[str, Any]) -> QueuedTask:
        task = QueuedTask(kind=kind, payload=json.dumps(payload, ensure_ascii=False, sort_keys=True))
        self._tasks[task.id] = task
        try:
            await self._persist()
        except Exception:
            del self._tasks[task.id]
            raise
        self.logger.info("task_enqueued", extra={"extra_fields": {"task_id": task.id, "kind": kind.value}})
        self._start(task.id)
        return task

    async def process_pending(self) -> int:
        started = 0
        for task in list(self._tasks.values()):
            awaiting_retry = task.status == TaskStatus.FAILED and task.retry_count < self.max_retries
            if task.status == TaskStatus.PENDING or awaiting_retry:
                self._start(task.id)
                started += 1
        if started:
            self.logger.info("tasks_resumed", extra={"extra_fields": {"count": started}})
        return started

    async def retry(self, task_id: str) -> QueuedTask:
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.FAILED:
            raise NotFound(f"No failed task with id {task_id}.")
        task.retry_count = 0
        task.error = None
        task.touch(TaskStatus.PENDING)
        await self._persist()
        self._start(task_id)
        return task

    async def delete(self, task_id: str) -> QueuedTask:
        task = self._tasks.pop(task_id, None)
        if task is None:
            raise NotFound(f"Task {task_id} not found.")
        self._cancel(task_id)
        await self._persist()
        return task

    async def clear_failed(self) -> int:
        failed = [task_id for task_id, task in self._tasks.items() if task.status == TaskStatus.FAILED]
        for task_id in failed:
            self._cancel(task_id)
            del self._tasks[task_id]
        if failed:
            await self._persist()
        return len(failed)

    async def cleanup_completed(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task.status == TaskStatus.COMPLETED and task.updated_at < cutoff
        ]
        for task_id in expired:
            del self._tasks[task_id]
        if expired:
            await self._persist()
            self.logger.info("tasks_cleaned", extra={"extra_fields": {"count": len(expired)}})
        return len(expired)

    async def drain(self) -> None:
        while self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        for task_id in list(self._active):
            self._cancel(task_id)

    def _start(self, task_id: str) -> None:
        self._cancel(task_id)
        runner = asyncio.create_task(self._run(task_id), name=f"plany-task-{task_id}")
        self._active[task_id] = runner
        runner.add_done_callback(lambda done: self._finished(task_id, done))

    def _cancel(self, task_id: str) -> None:
        existing = self._active.pop(task_id, None)
        if existing is not None and not existing.done():
            existing.cancel()

    def _finished(self, task_id: str, runner: asyncio.Task[None]) -> None:
        if self._active.get(task_id) is runner:
            del self._active[task_id]
        if runner.cancelled():
            return
        exc = runner.exception()
        if exc is not None:
            self.logger.error(
                "task_runner_crashed",
                exc_info=exc,
                extra={"extra_fields": {"task_id": task_id}},
            )

    async def _persist(self) -> None:
        async with self._persist_lock:
            self.store.save(list(self._tasks.values()))

    async def _run(self, task_id: str) -> None:
        delay_s = 0.0
        with log_context(task_id=task_id):
            while True:
                if delay_s > 0:
                    await self._sleep(delay_s)
                task = self._tasks.get(task_id)
                if task is None or task.status == TaskStatus.COMPLETED:
                    return
                if task.retry_count >= self.max_retries:
                    return

                task.touch(TaskStatus.PROCESSING)
                await self._persist()
                try:
                    handler = self._handlers.get(task.kind)
                    if handler is None:
                        raise PlanyError(f"No handler registered for {task.kind.value}.")
                    result = await handler(task)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    task.retry_count = min(self.max_retries, task.retry_count + 1)
                    task.error = exc.message if isinstance(exc, PlanyError) else str(exc) or exc.__class__.__name__
                    task.touch(TaskStatus.FAILED)
                    await self._persist()
                    if task.retry_count >= self.max_retries:
                        self.logger.error(
                            "task_failed_permanently",
                            extra={"extra_fields": {"kind": task.kind.value, "retry_count": task.retry_count, "error": task.error}},
                        )
                        return
                    delay_s = self.retry_delay(task.retry_count)
                    self.logger.warning(
                        "task_retry_scheduled",
                        extra={"extra_fields": {"kind": task.kind.value, "retry_count": task.retry_count, "delay_s": delay_s}},
                    )
                    continue

                task.result = result
                task.error = None
                task.touch(TaskStatus.COMPLETED)
                await self._persist()
                self.logger.info("task_completed", extra={"extra_fields": {"kind": task.kind.value}})
                return
