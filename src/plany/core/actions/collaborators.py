from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

from plany.core.queue.schemas import QueuedTask, TaskKind
from plany.core.stores.supplements import IntakeRecord, Supplement


class HydrationCollaborator(Protocol):
    async def append_entry(self, amount: float, unit: str, source: str, **fields: Any) -> str: ...


class FoodCollaborator(Protocol):
    async def append_entry(self, description: str, source: str, **fields: Any) -> str: ...


class SymptomCollaborator(Protocol):
    async def append_entry(self, description: str, severity: int, source: str, **fields: Any) -> str: ...


class SupplementCollaborator(Protocol):
    def find_by_name(self, name: str) -> Supplement | None: ...

    async def create_supplement(
        self,
        name: str,
        *,
        dosage: str | None = None,
        frequency: str = "daily",
        times_per_day: int = 1,
        source: str = "manual",
    ) -> Supplement: ...

    async def record_intake(
        self,
        supplement_id: str,
        *,
        taken_at: datetime | None = None,
        source: str = "manual",
        voice_log_id: str | None = None,
    ) -> IntakeRecord: ...


class ToastCollaborator(Protocol):
    def notify(self, message: str) -> Any: ...


class TaskEnqueuer(Protocol):
    async def enqueue(self, kind: TaskKind, payload: dict[str, Any]) -> QueuedTask: ...


PuqeCallback = Callable[[str | None, datetime], Awaitable[str]]
