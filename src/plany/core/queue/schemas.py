from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskKind(str, Enum):
    FETCH_FOOD_MACROS = "fetch_food_macros"
    ANALYZE_FOOD_IMAGE = "analyze_food_image"
    FETCH_PUQE_SUGGESTIONS = "fetch_puqe_suggestions"
    PROCESS_VOICE_COMMAND = "process_voice_command"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueuedTask(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: TaskKind
    payload: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    retry_count: int = 0
    result: str | None = None
    error: str | None = None

    def payload_data(self) -> dict[str, Any]:
        try:
            data = json.loads(self.payload)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def touch(self, status: TaskStatus) -> None:
        self.status = status
        self.updated_at = _now()
