from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

from plany.core.errors import PlanyError, StorageFailure

from .schemas import AudioArtifact


class RecordingSession:
    """Owns the capture lifecycle: audio chunks are appended to a file until stop or cancel."""

    def __init__(self, audio_dir: Path, *, suffix: str = ".m4a", clock: Callable[[], float] = time.monotonic) -> None:
        self.audio_dir = audio_dir
        self.suffix = suffix
        self._clock = clock
        self._artifact_id: str | None = None
        self._path: Path | None = None
        self._handle: BinaryIO | None = None
        self._started: float = 0.0
        self._started_at: datetime | None = None
        self._bytes = 0
        self.logger = logging.getLogger("plany.recording")

    @property
    def is_active(self) -> bool:
        return self._handle is not None

    def start(self) -> str:
        if self.is_active:
            raise PlanyError("A recording is already in progress.")
        artifact_id = str(uuid4())
        path = self.audio_dir / f"{artifact_id}{self.suffix}"
        try:
            self.audio_dir.mkdir(parents=True, exist_ok=True)
            self._handle = path.open("wb")
        except OSError as exc:
            raise StorageFailure(f"Could not create recording file: {exc.strerror or exc}") from exc
        self._artifact_id = artifact_id
        self._path = path
        self._bytes = 0
        self._started = self._clock()
        self._started_at = datetime.now(timezone.utc)
        self.logger.info("recording_started", extra={"extra_fields": {"artifact_id": artifact_id}})
        return artifact_id

    def feed(self, chunk: bytes) -> int:
        if self._handle is None:
            raise PlanyError("No recording is in progress.", remedy="Start a recording first.")
        try:
            self._handle.write(chunk)
        except OSError as exc:
            raise StorageFailure(f"Could not write audio: {exc.strerror or exc}") from exc
        self._bytes += len(chunk)
        return self._bytes

    def stop(self) -> AudioArtifact:
        if self._handle is None or self._path is None or self._artifact_id is None:
            raise PlanyError("No recording is in progress.", remedy="Start a recording first.")
        duration = max(0.0, self._clock() - self._started)
        try:
            self._handle.close()
        except OSError as exc:
            raise StorageFailure(f"Could not finish recording: {exc.strerror or exc}") from exc
        finally:
            self._handle = None
        artifact = AudioArtifact(
            id=self._artifact_id,
            duration_s=round(duration, 2),
            path=self._path,
            created_at=self._started_at or datetime.now(timezone.utc),
        )
        self.logger.info(
            "recording_stopped",
            extra={"extra_fields": {"artifact_id": artifact.id, "duration_s": artifact.duration_s, "bytes": self._bytes}},
        )
        self._artifact_id = None
        self._path = None
        return artifact

    def cancel(self) -> None:
        handle, path = self._handle, self._path
        self._handle = None
        self._path = None
        self._artifact_id = None
        if handle is not None:
            handle.close()
        if path is not None:
            path.unlink(missing_ok=True)
            self.logger.info("recording_cancelled", extra={"extra_fields": {"file": path.name}})
