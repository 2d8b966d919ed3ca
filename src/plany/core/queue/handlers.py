from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from plany.core.errors import InvalidAction
from plany.core.services.enrichment import EnrichmentService
from plany.core.services.extraction import ActionExtractionService

from .schemas import QueuedTask, TaskKind

if TYPE_CHECKING:
    from plany.core.actions.executor import ActionExecutor

    from .manager import BackgroundTaskQueue


class MacrosTarget(Protocol):
    async def update_macros(self, log_id: str, calories: int, protein: int, carbs: int, fat: int) -> None: ...


def _require(payload: dict[str, Any], key: str, kind: TaskKind) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise InvalidAction(f"{kind.value} task payload is missing {key}.", reason=f"missing_{key}")
    return str(value).strip()


class TaskHandlers:
    """Handlers for every queued task kind. Each returns the JSON result stored on the task."""

    def __init__(
        self,
        *,
        enrichment: EnrichmentService,
        food: MacrosTarget,
        extraction: ActionExtractionService,
        executor: ActionExecutor,
    ) -> None:
        self.enrichment = enrichment
        self.food = food
        self.extraction = extraction
        self.executor = executor
        self.logger = logging.getLogger("plany.queue.handlers")

    def register_all(self, queue: BackgroundTaskQueue) -> None:
        queue.register(TaskKind.FETCH_FOOD_MACROS, self.fetch_food_macros)
        queue.register(TaskKind.ANALYZE_FOOD_IMAGE, self.analyze_food_image)
        queue.register(TaskKind.FETCH_PUQE_SUGGESTIONS, self.fetch_puqe_suggestions)
        queue.register(TaskKind.PROCESS_VOICE_COMMAND, self.process_voice_command)

    async def fetch_food_macros(self, task: QueuedTask) -> str:
        payload = task.payload_data()
        food_name = _require(payload, "food_name", task.kind)
        log_id = _require(payload, "log_id", task.kind)
        macros = await self.enrichment.estimate_macros(food_name)
        await self.food.update_macros(log_id, macros.calories, macros.protein, macros.carbs, macros.fat)
        return macros.model_dump_json()

    async def analyze_food_image(self, task: QueuedTask) -> str:
        payload = task.payload_data()
        image_path = Path(_require(payload, "image_path", task.kind))
        analysis = await self.enrichment.analyze_food_image(image_path)
        log_id = payload.get("log_id")
        if log_id:
            totals = analysis.totals()
            await self.food.update_macros(str(log_id), totals.calories, totals.protein, totals.carbs, totals.fat)
        return analysis.model_dump_json(by_alias=True)

    async def fetch_puqe_suggestions(self, task: QueuedTask) -> str:
        payload = task.payload_data()
        try:
            nausea_level = int(_require(payload, "nausea_level", task.kind))
        except ValueError as exc:
            raise InvalidAction("Nausea level must be a whole number.", reason="invalid_nausea_level") from exc
        preferences = [str(item) for item in payload.get("preferences") or []]
        suggestions = await self.enrichment.suggest_foods(nausea_level, preferences)
        return json.dumps([item.model_dump(by_alias=True) for item in suggestions], ensure_ascii=False)

    async def process_voice_command(self, task: QueuedTask) -> str:
        payload = task.payload_data()
        transcript = _require(payload, "transcript", task.kind)
        now = datetime.now(timezone.utc)
        if payload.get("recorded_at"):
            now = datetime.fromisoformat(str(payload["recorded_at"]))
        actions = await self.extraction.extract(transcript, now)
        result = await self.executor.execute_batch(actions, voice_log_id=payload.get("voice_log_id"))
        return json.dumps(
            {
                "executed": [item.message for item in result.executed],
                "pending": [item.id for item in result.pending],
                "skipped": [item.reason for item in result.skipped],
            }
        )
