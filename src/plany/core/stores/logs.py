from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from plany.core.errors import NotFound

from .jsonfile import dump_records, read_json, validate_records, write_json_atomic
from .voice_logs import VoiceLogReferences, VoiceLogStore, referenced_by


class LogKind(str, Enum):
    WATER = "water"
    FOOD = "food"
    SYMPTOM = "symptom"


class LogEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: LogKind
    logged_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "manual"
    description: str | None = None
    amount: float | None = None
    unit: str | None = None
    severity: int | None = None
    meal_type: str | None = None
    calories: int | None = None
    protein: int | None = None
    carbs: int | None = None
    fat: int | None = None
    voice_log_id: str | None = None
    notes: str | None = None


class LogStore:
    """Water, food and symptom entries in ``logs.json``. Single writer behind an asyncio lock."""

    def __init__(
        self,
        state_dir: Path,
        voice_logs: VoiceLogStore | None = None,
        *,
        shared_with: Sequence[VoiceLogReferences] = (),
    ) -> None:
        self.path = state_dir / "logs.json"
        self.voice_logs = voice_logs
        self.shared_with = list(shared_with)
        self._lock = asyncio.Lock()
        self._entries: list[LogEntry] = validate_records(read_json(self.path, []), LogEntry)
        self.logger = logging.getLogger("plany.stores.logs")

    def _save(self) -> None:
        write_json_atomic(self.path, dump_records(self._entries))

    def list_entries(self, kind: LogKind | None = None, limit: int | None = None) -> list[LogEntry]:
        entries = [entry for entry in self._entries if kind is None or entry.kind == kind]
        entries.sort(key=lambda entry: entry.logged_at, reverse=True)
        return entries[:limit] if limit is not None else entries

    def get(self, log_id: str) -> LogEntry | None:
        for entry in self._entries:
            if entry.id == log_id:
                return entry
        return None

    def referenced_voice_logs(self) -> set[str]:
        return {entry.voice_log_id for entry in self._entries if entry.voice_log_id}

    async def append(self, entry: LogEntry) -> LogEntry:
        async with self._lock:
            self._entries.append(entry)
            try:
                self._save()
            except Exception:
                self._entries.remove(entry)
                raise
        self.logger.info(
            "log_appended",
            extra={"extra_fields": {"log_id": entry.id, "kind": entry.kind.value, "source": entry.source}},
        )
        return entry

    async def update_macros(self, log_id: str, calories: int, protein: int, carbs: int, fat: int) -> LogEntry:
        async with self._lock:
            entry = self.get(log_id)
            if entry is None:
                raise NotFound(f"Log entry {log_id} no longer exists.")
            index = self._entries.index(entry)
            updated = entry.model_copy(update={"calories": calories, "protein": protein, "carbs": carbs, "fat": fat})
            self._entries[index] = updated
            try:
                self._save()
            except Exception:
                self._entries[index] = entry
                raise
        return updated

    async def delete(self, log_id: str) -> LogEntry:
        async with self._lock:
            entry = self.get(log_id)
            if entry is None:
                raise NotFound(f"Log entry {log_id} not found.")
            self._entries.remove(entry)
            try:
                self._save()
            except Exception:
                self._entries.append(entry)
                raise
            still_referenced = referenced_by(self, *self.shared_with)
        if entry.voice_log_id and self.voice_logs is not None and entry.voice_log_id not in still_referenced:
            await self.voice_logs.release(entry.voice_log_id)
        return entry


class HydrationLog:
    def __init__(self, store: LogStore) -> None:
        self.store = store

    async def append_entry(self, amount: float, unit: str, source: str, **fields: Any) -> str:
        entry = await self.store.append(LogEntry(kind=LogKind.WATER, amount=amount, unit=unit, source=source, **fields))
        return entry.id


class FoodLog:
    def __init__(self, store: LogStore) -> None:
        self.store = store

    async def append_entry(self, description: str, source: str, **fields: Any) -> str:
        entry = await self.store.append(LogEntry(kind=LogKind.FOOD, description=description, source=source, **fields))
        return entry.id

    async def update_macros(self, log_id: str, calories: int, protein: int, carbs: int, fat: int) -> None:
        await self.store.update_macros(log_id, calories, protein, carbs, fat)


class SymptomLog:
    def __init__(self, store: LogStore) -> None:
        self.store = store

    async def append_entry(self, description: str, severity: int, source: str, **fields: Any) -> str:
        entry = await self.store.append(
            LogEntry(kind=LogKind.SYMPTOM, description=description, severity=severity, source=source, **fields)
        )
        return entry.id
