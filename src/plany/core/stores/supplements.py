from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from plany.core.actions.matching import SupplementMatcher
from plany.core.errors import NotFound

from .jsonfile import dump_records, read_json, validate_records, write_json_atomic


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Supplement(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    dosage: str | None = None
    frequency: str = "daily"
    times_per_day: int = 1
    created_at: datetime = Field(default_factory=_now)
    source: str = "manual"


class IntakeRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    supplement_id: str
    taken_at: datetime = Field(default_factory=_now)
    source: str = "manual"
    voice_log_id: str | None = None


class SupplementStore:
    def __init__(self, state_dir: Path, matcher: SupplementMatcher | None = None) -> None:
        self.path = state_dir / "supplements.json"
        self.matcher = matcher or SupplementMatcher()
        self._lock = asyncio.Lock()
        raw = read_json(self.path, {})
        raw = raw if isinstance(raw, dict) else {}
        self._supplements: list[Supplement] = validate_records(raw.get("supplements"), Supplement)
        self._intakes: list[IntakeRecord] = validate_records(raw.get("intakes"), IntakeRecord)
        self.logger = logging.getLogger("plany.stores.supplements")

    def _save(self) -> None:
        write_json_atomic(
            self.path,
            {"supplements": dump_records(self._supplements), "intakes": dump_records(self._intakes)},
        )

    def list_supplements(self) -> list[Supplement]:
        return list(self._supplements)

    def list_intakes(self, supplement_id: str | None = None) -> list[IntakeRecord]:
        return [record for record in self._intakes if supplement_id is None or record.supplement_id == supplement_id]

    def referenced_voice_logs(self) -> set[str]:
        return {record.voice_log_id for record in self._intakes if record.voice_log_id}

    def find_by_name(self, name: str) -> Supplement | None:
        return self.matcher.match(name, self._supplements)

    async def create_supplement(
        self,
        name: str,
        *,
        dosage: str | None = None,
        frequency: str = "daily",
        times_per_day: int = 1,
        source: str = "manual",
    ) -> Supplement:
        supplement = Supplement(
            name=name.strip(),
            dosage=dosage,
            frequency=frequency,
            times_per_day=max(1, times_per_day),
            source=source,
        )
        async with self._lock:
            self._supplements.append(supplement)
            try:
                self._save()
            except Exception:
                self._supplements.remove(supplement)
                raise
        self.logger.info(
            "supplement_created",
            extra={"extra_fields": {"supplement_id": supplement.id, "source": source}},
        )
        return supplement

    async def record_intake(
        self,
        supplement_id: str,
        *,
        taken_at: datetime | None = None,
        source: str = "manual",
        voice_log_id: str | None = None,
    ) -> IntakeRecord:
        async with self._lock:
            if not any(item.id == supplement_id for item in self._supplements):
                raise NotFound(f"Supplement {supplement_id} not found.")
            record = IntakeRecord(
                supplement_id=supplement_id,
                taken_at=taken_at or _now(),
                source=source,
                voice_log_id=voice_log_id,
            )
            self._intakes.append(record)
            try:
                self._save()
            except Exception:
                self._intakes.remove(record)
                raise
        return record
