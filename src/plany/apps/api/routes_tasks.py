from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from plany.core.config import Settings, get_settings
from plany.core.queue.manager import BackgroundTaskQueue
from plany.core.queue.schemas import QueuedTask, TaskKind, TaskStatus
from plany.core.scheduler.jobs import run_maintenance
from plany.core.stores.logs import LogStore
from plany.core.stores.supplements import SupplementStore
from plany.core.stores.voice_logs import VoiceLogStore

from .deps import get_executor, get_log_store, get_supplement_store, get_task_queue, get_voice_log_store

router = APIRouter()


class TaskRequest(BaseModel):
    kind: TaskKind
    payload: dict[str, Any] = Field(default_factory=dict)


@router.get("", response_model=list[QueuedTask])
def list_tasks(
    status: TaskStatus | None = Query(default=None),
    queue: BackgroundTaskQueue = Depends(get_task_queue),
) -> list[QueuedTask]:
    return queue.list_tasks(status)


# Building the executor registers the queue handlers.
@router.post("", response_model=QueuedTask, status_code=202, dependencies=[Depends(get_executor)])
async def enqueue_task(request: TaskRequest, queue: BackgroundTaskQueue = Depends(get_task_queue)) -> QueuedTask:
    return await queue.enqueue(request.kind, request.payload)


@router.post("/process-pending")
async def process_pending(queue: BackgroundTaskQueue = Depends(get_task_queue)) -> dict[str, int]:
    return {"started": await queue.process_pending()}


@router.post("/cleanup")
async def cleanup(
    queue: BackgroundTaskQueue = Depends(get_task_queue),
    logs: LogStore = Depends(get_log_store),
    supplements: SupplementStore = Depends(get_supplement_store),
    voice_logs: VoiceLogStore = Depends(get_voice_log_store),
    settings: Settings = Depends(get_settings),
) -> dict[str, int]:
    return await run_maintenance(queue, voice_logs, [logs, supplements], timedelta(hours=settings.audio_grace_hours))


@router.post("/{task_id}/retry", response_model=QueuedTask)
async def retry_task(task_id: str, queue: BackgroundTaskQueue = Depends(get_task_queue)) -> QueuedTask:
    return await queue.retry(task_id)


@router.delete("/failed")
async def clear_failed(queue: BackgroundTaskQueue = Depends(get_task_queue)) -> dict[str, int]:
    return {"removed": await queue.clear_failed()}


@router.delete("/{task_id}", response_model=QueuedTask)
async def delete_task(task_id: str, queue: BackgroundTaskQueue = Depends(get_task_queue)) -> QueuedTask:
    return await queue.delete(task_id)
