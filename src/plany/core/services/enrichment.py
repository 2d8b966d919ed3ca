from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from plany.core.config import Settings
from plany.core.errors import MalformedResponse, ServiceErrorCode, StorageFailure

from . import prompts
from .openai_compat import OpenAICompatClient

SERVICE_NAME = "enrichment"


class NutritionMacros(BaseModel):
    calories: int
    protein: int
    carbs: int
    fat: int


class FoodItem(BaseModel):
    name: str
    quantity: str
    calories: int = Field(alias="estimatedCalories")
    protein: float
    carbs: float
    fat: float
    fiber: float


class FoodImageAnalysis(BaseModel):
    items: list[FoodItem]
    total_calories: int = Field(alias="totalCalories")
    total_protein: float = Field(alias="totalProtein")
    total_carbs: float = Field(alias="totalCarbs")
    total_fat: float = Field(alias="totalFat")
    total_fiber: float = Field(alias="totalFiber")

    def totals(self) -> NutritionMacros:
        return NutritionMacros(
            calories=self.total_calories,
            protein=round(self.total_protein),
            carbs=round(self.total_carbs),
            fat=round(self.total_fat),
        )


class FoodSuggestion(BaseModel):
    food: str
    reason: str
    nutritional_benefit: str = Field(alias="nutritionalBenefit")
    preparation_tip: str = Field(alias="preparationTip")
    avoid_if_high: bool = Field(alias="avoidIfHigh")


class EnrichmentService(Protocol):
    async def estimate_macros(self, food_description: str) -> NutritionMacros: ...

    async def analyze_food_image(self, image_path: Path) -> FoodImageAnalysis: ...

    async def suggest_foods(self, nausea_level: int, preferences: list[str] | None = None) -> list[FoodSuggestion]: ...


def _validate(model: type[BaseModel], payload: Any, what: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponse(
            f"{what} response did not match the expected shape.",
            code=ServiceErrorCode.DESERIALIZATION_ERROR,
            service=SERVICE_NAME,
        ) from exc


class LLMEnrichmentService:
    def __init__(self, settings: Settings, compat: OpenAICompatClient | None = None) -> None:
        self.model = settings.enrichment_model
        self.vision_model = settings.extraction_model
        self.compat = compat or OpenAICompatClient(settings)
        self.logger = logging.getLogger("plany.services.enrichment")

    async def estimate_macros(self, food_description: str) -> NutritionMacros:
        payload = await self.compat.chat_json(
            service=SERVICE_NAME,
            model=self.model,
            system=prompts.MACROS_SYSTEM,
            user=prompts.macros_prompt(food_description),
            schema_name="food_macros_response",
            schema=prompts.MACROS_SCHEMA,
            max_tokens=150,
        )
        return _validate(NutritionMacros, payload, "Macro estimate")

    async def analyze_food_image(self, image_path: Path) -> FoodImageAnalysis:
        try:
            encoded = base64.b64encode(image_path.read_bytes()).decode("ascii")
        except OSError as exc:
            raise StorageFailure(f"Food photo could not be read: {image_path.name}") from exc
        content = [
            {"type": "text", "text": prompts.IMAGE_PROMPT},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}},
        ]
        payload = await self.compat.chat_json(
            service=SERVICE_NAME,
            model=self.vision_model,
            system=prompts.IMAGE_SYSTEM,
            user=content,
            schema_name="food_analysis_response",
            schema=prompts.IMAGE_SCHEMA,
            max_tokens=1200,
        )
        return _validate(FoodImageAnalysis, payload, "Food photo analysis")

    async def suggest_foods(self, nausea_level: int, preferences: list[str] | None = None) -> list[FoodSuggestion]:
        payload = await self.compat.chat_json(
            service=SERVICE_NAME,
            model=self.model,
            system=prompts.SUGGESTIONS_SYSTEM,
            user=prompts.suggestions_prompt(nausea_level, preferences or []),
            schema_name="food_suggestions_response",
            schema=prompts.SUGGESTIONS_SCHEMA,
            temperature=0.8,
            max_tokens=900,
        )
        raw = payload.get("suggestions")
        if not isinstance(raw, list):
            raise MalformedResponse(
                "Food suggestions response is missing the suggestions list.",
                code=ServiceErrorCode.DESERIALIZATION_ERROR,
                service=SERVICE_NAME,
            )
        return [_validate(FoodSuggestion, item, "Food suggestion") for item in raw]
