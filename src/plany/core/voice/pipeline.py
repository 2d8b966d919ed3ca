from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from plany.core.actions.executor import ActionExecutor
from plany.core.actions.schemas import (
    ActionKind,
    CandidateAction,
    ExecutedAction,
    PendingConfirmation,
    SkippedAction,
)
from plany.core.errors import PipelineBusy, PlanyError
from plany.core.logging import log_context
from plany.core.recording.session import RecordingSession
from plany.core.services.extraction import ActionExtractionService
from plany.core.services.transcription import TranscriptionService
from plany.core.stores.voice_logs import VoiceCategory, VoiceLogStore


class PipelineState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    RECOGNIZING = "recognizing"
    EXECUTING = "executing"
    COMPLETED = "completed"


class PipelineSnapshot(BaseModel):
    state: PipelineState
    session_id: str | None = None
    voice_log_id: str | None = None
    last_transcription: str | None = None
    candidates: list[CandidateAction] = Field(default_factory=list)
    executed: list[ExecutedAction] = Field(default_factory=list)
    pending: list[PendingConfirmation] = Field(default_factory=list)
    skipped: list[SkippedAction] = Field(default_factory=list)
    error: dict[str, Any] | None = None


_CATEGORY_BY_KIND = {
    ActionKind.LOG_FOOD: VoiceCategory.FOOD,
    ActionKind.LOG_WATER: VoiceCategory.WATER,
    ActionKind.LOG_SYMPTOM: VoiceCategory.SYMPTOM,
    ActionKind.LOG_VITAMIN: VoiceCategory.SUPPLEMENT,
    ActionKind.ADD_NEW_VITAMIN: VoiceCategory.SUPPLEMENT,
    ActionKind.LOG_PUQE_SCORE: VoiceCategory.PUQE,
}

_BUSY = {PipelineState.RECOGNIZING, PipelineState.EXECUTING}


def _local_now() -> datetime:
    return datetime.now().astimezone()


def categorize(actions: list[CandidateAction]) -> VoiceCategory:
    categories = {_CATEGORY_BY_KIND[action.kind] for action in actions if action.kind in _CATEGORY_BY_KIND}
    if not categories:
        return VoiceCategory.GENERAL
    if len(categories) > 1:
        return VoiceCategory.MIXED
    return categories.pop()


class VoicePipeline:
    """idle -> recording -> recognizing -> executing -> completed, one transition at a time."""

    def __init__(
        self,
        *,
        recorder: RecordingSession,
        transcription: TranscriptionService,
        extraction: ActionExtractionService,
        executor: ActionExecutor,
        voice_logs: VoiceLogStore,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.recorder = recorder
        self.transcription = transcription
        self.extraction = extraction
        self.executor = executor
        self.voice_logs = voice_logs
        self._clock = clock
        self._lock = asyncio.Lock()
        self.state = PipelineState.IDLE
        self._session_id: str | None = None
        self._voice_log_id: str | None = None
        self.last_transcription: str | None = None
        self._candidates: list[CandidateAction] = []
        self._executed: list[ExecutedAction] = []
        self._skipped: list[SkippedAction] = []
        self.last_error: dict[str, Any] | None = None
        self.logger = logging.getLogger("plany.voice.pipeline")

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(
            state=self.state,
            session_id=self._session_id,
            voice_log_id=self._voice_log_id,
            last_transcription=self.last_transcription,
            candidates=list(self._candidates),
            executed=list(self._executed),
            pending=self.executor.list_pending(),
            skipped=list(self._skipped),
            error=self.last_error,
        )

    def _ensure_not_busy(self) -> None:
        if self.state in _BUSY or self._lock.locked():
            raise PipelineBusy(f"Voice pipeline is {self.state.value}.")

    def _reset_results(self) -> None:
        self._voice_log_id = None
        self.last_transcription = None
        self._candidates = []
        self._executed = []
        self._skipped = []
        self.last_error = None

    async def start_recording(self) -> PipelineSnapshot:
        self._ensure_not_busy()
        if self.state == PipelineState.RECORDING:
            return await self.stop_recording()

        self._reset_results()
        self.executor.clear_pending()
        self._session_id = str(uuid4())
        self.recorder.start()
        self.state = PipelineState.RECORDING
        return self.snapshot()

    def feed(self, chunk: bytes) -> int:
        if self.state != PipelineState.RECORDING:
            raise PipelineBusy("No recording is in progress.", remedy="Start a recording first.")
        return self.recorder.feed(chunk)

    async def stop_recording(self) -> PipelineSnapshot:
        self._ensure_not_busy()
        if self.state != PipelineState.RECORDING:
            raise PipelineBusy("No recording is in progress.", remedy="Start a recording first.")

        async with self._lock:
            with log_context(session_id=self._session_id):
                self.state = PipelineState.RECOGNIZING
                try:
                    await self._process()
                except PlanyError as exc:
                    self._fail(exc.to_dict())
                    raise
                except Exception:
                    self._fail({"error": "InternalError", "message": "Processing the recording failed.", "remedy": "Try again."})
                    raise
        return self.snapshot()

    async def _process(self) -> None:
        artifact = self.recorder.stop()
        await self.voice_logs.add(artifact)
        self._voice_log_id = artifact.id

        transcript = await self.transcription.transcribe(artifact)
        self.last_transcription = transcript.text
        await self.voice_logs.annotate(artifact.id, transcription=transcript.text)

        if transcript.is_empty:
            self.logger.info("transcript_empty")
            candidates: list[CandidateAction] = []
        else:
            candidates = await self.extraction.extract(transcript.text, self._clock())
        self._candidates = candidates

        self.state = PipelineState.EXECUTING
        result = await self.executor.execute_batch(candidates, voice_log_id=artifact.id)
        self._executed = result.executed
        self._skipped = result.skipped
        await self.voice_logs.annotate(artifact.id, category=categorize(candidates))

        self.state = PipelineState.COMPLETED
        self.logger.info(
            "pipeline_completed",
            extra={
                "extra_fields": {
                    "candidates": len(candidates),
                    "executed": len(result.executed),
                    "pending": len(result.pending),
                    "skipped": len(result.skipped),
                }
            },
        )

    def _fail(self, error: dict[str, Any]) -> None:
        if self.recorder.is_active:
            self.recorder.cancel()
        self.last_error = error
        self.state = PipelineState.IDLE
        self.logger.warning("pipeline_failed", extra={"extra_fields": {"error": error}})

    async def dismiss(self) -> PipelineSnapshot:
        self._ensure_not_busy()
        if self.state == PipelineState.RECORDING:
            self.recorder.cancel()
        self._reset_results()
        self._session_id = None
        self.state = PipelineState.IDLE
        return self.snapshot()
