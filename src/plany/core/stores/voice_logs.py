from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from plany.core.errors import NotFound, StorageFailure
from plany.core.recording.schemas import AudioArtifact

from .jsonfile import dump_records, read_json, validate_records, write_json_atomic


class VoiceCategory(str, Enum):
    FOOD = "food"
    WATER = "water"
    SYMPTOM = "symptom"
    SUPPLEMENT = "supplement"
    PUQE = "puqe"
    MIXED = "mixed"
    GENERAL = "general"


class VoiceLogReferences(Protocol):
    def referenced_voice_logs(self) -> set[str]: ...


def referenced_by(*sources: VoiceLogReferences) -> set[str]:
    referenced: set[str] = set()
    for source in sources:
        referenced |= source.referenced_voice_logs()
    return referenced


class VoiceLog(BaseModel):
    id: str
    filename: str
    duration_s: float = 0.0
    category: VoiceCategory = VoiceCategory.GENERAL
    transcription: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VoiceLogStore:
    """Recording metadata in ``voice_logs.json`` with the audio files under ``audio/``."""

    def __init__(self, state_dir: Path) -> None:
        self.path = state_dir / "voice_logs.json"
        self.audio_dir = state_dir / "audio"
        self._lock = asyncio.Lock()
        self._records: list[VoiceLog] = validate_records(read_json(self.path, []), VoiceLog)
        self.logger = logging.getLogger("plany.stores.voice_logs")

    def _save(self) -> None:
        write_json_atomic(self.path, dump_records(self._records))

    def audio_path_for(self, artifact_id: str, suffix: str = ".m4a") -> Path:
        return self.audio_dir / f"{artifact_id}{suffix}"

    def list_logs(self) -> list[VoiceLog]:
        return sorted(self._records, key=lambda record: record.created_at, reverse=True)

    def get(self, voice_log_id: str) -> VoiceLog | None:
        for record in self._records:
            if record.id == voice_log_id:
                return record
        return None

    async def add(self, artifact: AudioArtifact) -> VoiceLog:
        record = VoiceLog(
            id=artifact.id,
            filename=artifact.path.name,
            duration_s=artifact.duration_s,
            created_at=artifact.created_at,
        )
        async with self._lock:
            self._records.append(record)
            self._save()
        return record

    async def annotate(
        self,
        voice_log_id: str,
        *,
        transcription: str | None = None,
        category: VoiceCategory | None = None,
    ) -> VoiceLog:
        async with self._lock:
            record = self.get(voice_log_id)
            if record is None:
                raise NotFound(f"Voice log {voice_log_id} not found.")
            if transcription is not None:
                record.transcription = transcription
            if category is not None:
                record.category = category
            self._save()
        return record

    async def release(self, voice_log_id: str) -> None:
        async with self._lock:
            record = self.get(voice_log_id)
            if record is not None:
                self._records.remove(record)
                self._save()
            self._unlink(self.audio_dir / record.filename if record else self.audio_path_for(voice_log_id))
        self.logger.info("audio_released", extra={"extra_fields": {"voice_log_id": voice_log_id}})

    async def sweep_orphans(self, referenced: set[str], grace: timedelta, now: datetime | None = None) -> list[str]:
        """Drop recordings nothing references once they are older than ``grace``. Returns removed ids."""
        cutoff = (now or datetime.now(timezone.utc)) - grace
        removed: list[str] = []
        async with self._lock:
            for record in list(self._records):
                if record.id in referenced or record.created_at > cutoff:
                    continue
                self._records.remove(record)
                self._unlink(self.audio_dir / record.filename)
                removed.append(record.id)
            if removed:
                self._save()

            known = {record.filename for record in self._records}
            if self.audio_dir.exists():
                for path in self.audio_dir.iterdir():
                    if not path.is_file() or path.name in known or path.stem in referenced:
                        continue
                    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
                    if modified <= cutoff:
                        self._unlink(path)
                        removed.append(path.stem)
        if removed:
            self.logger.info("audio_orphans_swept", extra={"extra_fields": {"count": len(removed)}})
        return removed

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Could not delete recording {path.name}: {exc.strerror or exc}") from exc
