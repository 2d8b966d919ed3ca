from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from plany.core.errors import StorageFailure


class PuqeRequestSink:
    """Receives PUQE score requests raised from voice input. Appends to ``puqe_requests.jsonl``."""

    def __init__(self, state_dir: Path) -> None:
        self.file_path = state_dir / "puqe_requests.jsonl"
        self._lock = asyncio.Lock()

    async def __call__(self, notes: str | None, timestamp: datetime) -> str:
        record = {
            "id": str(uuid4()),
            "notes": notes,
            "timestamp": timestamp.isoformat(),
            "received_at": datetime.now(timezone.utc).isoformat(),
            "source": "voice",
        }
        async with self._lock:
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                with self.file_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record, ensure_ascii=False) + "\n")
            except OSError as exc:
                raise StorageFailure(f"Could not record PUQE request: {exc.strerror or exc}") from exc
        return record["id"]
