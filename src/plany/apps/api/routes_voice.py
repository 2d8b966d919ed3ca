from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from plany.core.actions.executor import ActionExecutor
from plany.core.actions.schemas import ExecutedAction, PendingConfirmation
from plany.core.stores.voice_logs import VoiceLog, VoiceLogStore
from plany.core.voice.pipeline import PipelineSnapshot, VoicePipeline

from .deps import get_executor, get_pipeline, get_voice_log_store

router = APIRouter()


@router.post("/recording/start", response_model=PipelineSnapshot)
async def start_recording(pipeline: VoicePipeline = Depends(get_pipeline)) -> PipelineSnapshot:
    return await pipeline.start_recording()


@router.post("/recording/chunk")
async def add_chunk(request: Request, pipeline: VoicePipeline = Depends(get_pipeline)) -> dict[str, int]:
    body = await request.body()
    return {"bytes_recorded": pipeline.feed(body)}


@router.post("/recording/stop", response_model=PipelineSnapshot)
async def stop_recording(pipeline: VoicePipeline = Depends(get_pipeline)) -> PipelineSnapshot:
    return await pipeline.stop_recording()


@router.post("/dismiss", response_model=PipelineSnapshot)
async def dismiss(pipeline: VoicePipeline = Depends(get_pipeline)) -> PipelineSnapshot:
    return await pipeline.dismiss()


@router.get("/state", response_model=PipelineSnapshot)
def state(pipeline: VoicePipeline = Depends(get_pipeline)) -> PipelineSnapshot:
    return pipeline.snapshot()


@router.get("/pending", response_model=list[PendingConfirmation])
def list_pending(executor: ActionExecutor = Depends(get_executor)) -> list[PendingConfirmation]:
    return executor.list_pending()


@router.post("/pending/{action_id}/confirm", response_model=ExecutedAction)
async def confirm_pending(action_id: str, executor: ActionExecutor = Depends(get_executor)) -> ExecutedAction:
    return await executor.confirm(action_id)


@router.post("/pending/{action_id}/reject")
def reject_pending(action_id: str, executor: ActionExecutor = Depends(get_executor)) -> dict[str, str]:
    rejected = executor.reject(action_id)
    return {"id": rejected.id, "status": "rejected"}


@router.get("/logs", response_model=list[VoiceLog])
def list_voice_logs(store: VoiceLogStore = Depends(get_voice_log_store)) -> list[VoiceLog]:
    return store.list_logs()
