from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ActionKind(str, Enum):
    LOG_WATER = "log_water"
    LOG_FOOD = "log_food"
    LOG_SYMPTOM = "log_symptom"
    LOG_VITAMIN = "log_vitamin"
    LOG_PUQE_SCORE = "log_puqe_score"
    ADD_NEW_VITAMIN = "add_new_vitamin"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "ActionKind":
        value = str(raw or "").strip().casefold()
        value = _KIND_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_KIND_ALIASES = {
    "log_puqe": "log_puqe_score",
    "add_vitamin": "add_new_vitamin",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ActionDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    item: str | None = None
    amount: str | None = None
    unit: str | None = None
    calories: str | None = None
    severity: str | None = None
    meal_type: str | None = Field(default=None, alias="mealType")
    symptoms: list[str] | None = None
    vitamin_name: str | None = Field(default=None, alias="vitaminName")
    notes: str | None = None
    timestamp: str | None = None
    frequency: str | None = None
    dosage: str | None = None
    times_per_day: int | None = Field(default=None, alias="timesPerDay")

    @field_validator("amount", "calories", "severity", "dosage", mode="before")
    @classmethod
    def _stringify_numbers(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class CandidateAction(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: ActionKind
    details: ActionDetails = Field(default_factory=ActionDetails)
    confidence: float = Field(ge=0.0, le=1.0)


class ExecutedAction(BaseModel):
    action: CandidateAction
    log_id: str | None = None
    log_ids: list[str] = Field(default_factory=list)
    executed_at: datetime = Field(default_factory=utc_now)
    message: str


class PendingConfirmation(BaseModel):
    action: CandidateAction
    voice_log_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def id(self) -> str:
        return self.action.id


class SkippedAction(BaseModel):
    action: CandidateAction
    reason: str
    message: str


class BatchResult(BaseModel):
    executed: list[ExecutedAction] = Field(default_factory=list)
    pending: list[PendingConfirmation] = Field(default_factory=list)
    skipped: list[SkippedAction] = Field(default_factory=list)
