from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel

from plany.core.config import Settings
from plany.core.errors import MalformedResponse, ServiceErrorCode
from plany.core.recording.schemas import AudioArtifact

from .openai_compat import OpenAICompatClient

SERVICE_NAME = "transcription"


class Transcript(BaseModel):
    text: str
    duration: float | None = None
    language: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class TranscriptionService(Protocol):
    async def transcribe(self, artifact: AudioArtifact) -> Transcript: ...


class OpenAITranscriptionService:
    def __init__(self, settings: Settings, compat: OpenAICompatClient | None = None) -> None:
        self.model = settings.transcription_model
        self.compat = compat or OpenAICompatClient(settings)
        self.logger = logging.getLogger("plany.services.transcription")

    async def transcribe(self, artifact: AudioArtifact) -> Transcript:
        payload = await self.compat.transcribe(service=SERVICE_NAME, model=self.model, audio_path=artifact.path)
        text = payload.get("text")
        if not isinstance(text, str):
            raise MalformedResponse(
                "Transcription response did not include any text.",
                code=ServiceErrorCode.INVALID_RESPONSE,
                service=SERVICE_NAME,
            )
        duration = payload.get("duration")
        transcript = Transcript(
            text=text.strip(),
            duration=float(duration) if isinstance(duration, (int, float)) else artifact.duration_s,
            language=payload.get("language") if isinstance(payload.get("language"), str) else None,
        )
        self.logger.info(
            "transcription_complete",
            extra={"extra_fields": {"artifact_id": artifact.id, "chars": len(transcript.text)}},
        )
        return transcript
