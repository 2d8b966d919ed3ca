from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

from pydantic import ValidationError

from plany.core.actions.schemas import ActionDetails, ActionKind, CandidateAction
from plany.core.config import Settings
from plany.core.errors import MalformedResponse, ServiceErrorCode

from . import prompts
from .openai_compat import OpenAICompatClient

SERVICE_NAME = "extraction"


class ActionExtractionService(Protocol):
    async def extract(self, transcript: str, now: datetime) -> list[CandidateAction]: ...


def _malformed(message: str) -> MalformedResponse:
    return MalformedResponse(message, code=ServiceErrorCode.DESERIALIZATION_ERROR, service=SERVICE_NAME)


def parse_actions(payload: dict[str, Any]) -> list[CandidateAction]:
    """Turn a decoded ``{"actions": [...]}`` body into candidates, preserving order."""
    raw_actions = payload.get("actions")
    if not isinstance(raw_actions, list):
        raise _malformed("Extraction response is missing the actions list.")

    actions: list[CandidateAction] = []
    for index, raw in enumerate(raw_actions):
        if not isinstance(raw, dict):
            raise _malformed(f"Action {index} is not an object.")
        details = raw.get("details") or {}
        if not isinstance(details, dict):
            raise _malformed(f"Action {index} has invalid details.")
        try:
            actions.append(
                CandidateAction(
                    kind=ActionKind.parse(raw.get("type")),
                    details=ActionDetails.model_validate(details),
                    confidence=raw.get("confidence"),
                )
            )
        except ValidationError as exc:
            raise _malformed(f"Action {index} failed validation: {exc.error_count()} error(s).") from exc
    return actions


class LLMActionExtractionService:
    def __init__(self, settings: Settings, compat: OpenAICompatClient | None = None) -> None:
        self.model = settings.extraction_model
        self.compat = compat or OpenAICompatClient(settings)
        self.logger = logging.getLogger("plany.services.extraction")

    async def extract(self, transcript: str, now: datetime) -> list[CandidateAction]:
        payload = await self.compat.chat_json(
            service=SERVICE_NAME,
            model=self.model,
            system=prompts.EXTRACTION_SYSTEM,
            user=prompts.extraction_prompt(transcript, now),
            schema_name="voice_actions_response",
            schema=prompts.EXTRACTION_SCHEMA,
            max_tokens=1200,
        )
        actions = parse_actions(payload)
        self.logger.info(
            "extraction_complete",
            extra={"extra_fields": {"count": len(actions), "kinds": [action.kind.value for action in actions]}},
        )
        return actions
