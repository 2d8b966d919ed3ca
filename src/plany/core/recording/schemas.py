from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field


class AudioArtifact(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    duration_s: float = 0.0
    path: Path
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
