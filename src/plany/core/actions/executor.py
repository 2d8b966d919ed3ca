from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from plany.core.errors import InvalidAction, NotFound, PlanyError, ServiceError
from plany.core.logging import log_context
from plany.core.queue.schemas import TaskKind

from .collaborators import (
    FoodCollaborator,
    HydrationCollaborator,
    PuqeCallback,
    SupplementCollaborator,
    SymptomCollaborator,
    TaskEnqueuer,
    ToastCollaborator,
)
from .policy import ConfidencePolicy
from .schemas import (
    ActionKind,
    BatchResult,
    CandidateAction,
    ExecutedAction,
    PendingConfirmation,
    SkippedAction,
)

VOICE_SOURCE = "voice"
DEFAULT_SEVERITY = 3

_SEVERITY_WORDS = {
    "mild": 2,
    "light": 2,
    "slight": 2,
    "moderate": 3,
    "medium": 3,
    "severe": 4,
    "heavy": 4,
    "bad": 4,
}

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)")
_TIMES_PER_DAY = {"daily": 1, "once daily": 1, "twice daily": 2, "three times daily": 3, "four times daily": 4}


def parse_severity(raw: str | None) -> int:
    if not raw:
        return DEFAULT_SEVERITY
    value = raw.strip().casefold()
    if value.isdigit() and 1 <= int(value) <= 5:
        return int(value)
    return _SEVERITY_WORDS.get(value, DEFAULT_SEVERITY)


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw or not raw.strip():
        return None
    value = raw.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.astimezone()


def skip_reason(exc: PlanyError) -> str:
    if isinstance(exc, InvalidAction):
        return exc.reason
    if isinstance(exc, ServiceError):
        return exc.code.value
    return re.sub(r"(?<!^)(?=[A-Z])", "_", exc.__class__.__name__).lower()


def _parse_amount(raw: str | None) -> float | None:
    if raw is None:
        return None
    match = _LEADING_NUMBER.match(raw)
    if match is None:
        return None
    amount = float(match.group(1))
    return amount if amount > 0 else None


def _format_amount(amount: float) -> str:
    return str(int(amount)) if amount.is_integer() else f"{amount:g}"


class ActionExecutor:
    """Applies candidate actions to the log collaborators, holding low-confidence ones for confirmation."""

    def __init__(
        self,
        *,
        hydration: HydrationCollaborator,
        food: FoodCollaborator,
        symptoms: SymptomCollaborator,
        supplements: SupplementCollaborator,
        toasts: ToastCollaborator,
        tasks: TaskEnqueuer,
        puqe: PuqeCallback,
        policy: ConfidencePolicy | None = None,
        water_default_amount: float = 8,
        water_default_unit: str = "oz",
    ) -> None:
        self.hydration = hydration
        self.food = food
        self.symptoms = symptoms
        self.supplements = supplements
        self.toasts = toasts
        self.tasks = tasks
        self.puqe = puqe
        self.policy = policy or ConfidencePolicy()
        self.water_default_amount = water_default_amount
        self.water_default_unit = water_default_unit
        self._pending: dict[str, PendingConfirmation] = {}
        self.logger = logging.getLogger("plany.actions.executor")

    def list_pending(self) -> list[PendingConfirmation]:
        return list(self._pending.values())

    def clear_pending(self) -> None:
        self._pending.clear()

    async def execute_batch(self, actions: list[CandidateAction], *, voice_log_id: str | None = None) -> BatchResult:
        result = BatchResult()
        for action in actions:
            with log_context(action_id=action.id):
                if action.kind == ActionKind.UNKNOWN:
                    self.logger.info("action_unknown", extra={"extra_fields": {"confidence": action.confidence}})
                    result.skipped.append(
                        SkippedAction(action=action, reason="unknown", message="Could not tell what to log.")
                    )
                    continue
                try:
                    self._validate(action)
                except InvalidAction as exc:
                    result.skipped.append(self._skip(action, exc))
                    continue

                if not self.policy.should_auto_execute(action):
                    pending = PendingConfirmation(action=action, voice_log_id=voice_log_id)
                    self._pending[action.id] = pending
                    result.pending.append(pending)
                    self.logger.info(
                        "action_pending_confirmation",
                        extra={"extra_fields": {"kind": action.kind.value, "confidence": action.confidence}},
                    )
                    continue

                try:
                    result.executed.append(await self._execute(action, voice_log_id))
                except PlanyError as exc:
                    result.skipped.append(self._skip(action, exc))
        return result

    async def confirm(self, action_id: str) -> ExecutedAction:
        pending = self._pending.pop(action_id, None)
        if pending is None:
            raise NotFound(f"No pending action with id {action_id}.")
        with log_context(action_id=action_id):
            return await self._execute(pending.action, pending.voice_log_id)

    def reject(self, action_id: str) -> PendingConfirmation:
        pending = self._pending.pop(action_id, None)
        if pending is None:
            raise NotFound(f"No pending action with id {action_id}.")
        self.logger.info("action_rejected", extra={"extra_fields": {"action_id": action_id}})
        return pending

    def _skip(self, action: CandidateAction, exc: PlanyError) -> SkippedAction:
        reason = skip_reason(exc)
        self.logger.warning(
            "action_skipped",
            extra={"extra_fields": {"kind": action.kind.value, "reason": reason, "detail": exc.message}},
        )
        return SkippedAction(action=action, reason=reason, message=exc.message)

    def _validate(self, action: CandidateAction) -> datetime:
        timestamp = action.details.timestamp
        if not timestamp:
            raise InvalidAction("Action has no timestamp.", reason="missing_timestamp")
        parsed = parse_timestamp(timestamp)
        if parsed is None:
            raise InvalidAction(f"Action timestamp {timestamp!r} is not ISO-8601.", reason="invalid_timestamp")
        return parsed

    async def _execute(self, action: CandidateAction, voice_log_id: str | None) -> ExecutedAction:
        logged_at = self._validate(action)
        handlers = {
            ActionKind.LOG_WATER: self._log_water,
            ActionKind.LOG_FOOD: self._log_food,
            ActionKind.LOG_VITAMIN: self._log_vitamin,
            ActionKind.ADD_NEW_VITAMIN: self._add_vitamin,
            ActionKind.LOG_SYMPTOM: self._log_symptom,
            ActionKind.LOG_PUQE_SCORE: self._log_puqe,
        }
        handler = handlers.get(action.kind)
        if handler is None:
            raise InvalidAction(f"Action kind {action.kind.value} cannot be executed.", reason="unsupported_kind")

        log_ids, message = await handler(action, logged_at, voice_log_id)
        self.toasts.notify(message)
        executed = ExecutedAction(
            action=action,
            log_id=log_ids[0] if log_ids else None,
            log_ids=log_ids,
            executed_at=datetime.now(timezone.utc),
            message=message,
        )
        self.logger.info(
            "action_executed",
            extra={"extra_fields": {"kind": action.kind.value, "log_id": executed.log_id}},
        )
        return executed

    async def _log_water(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        details = action.details
        amount = _parse_amount(details.amount)
        if amount is None:
            amount, unit = float(self.water_default_amount), self.water_default_unit
        else:
            unit = (details.unit or "").strip() or self.water_default_unit
        log_id = await self.hydration.append_entry(
            amount, unit, VOICE_SOURCE, logged_at=logged_at, voice_log_id=voice_log_id
        )
        return [log_id], f"Logged {_format_amount(amount)} {unit} of water"

    async def _log_food(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        description = (action.details.item or "").strip()
        if not description:
            raise InvalidAction("Food action has no item description.", reason="missing_item")
        log_id = await self.food.append_entry(
            description,
            VOICE_SOURCE,
            logged_at=logged_at,
            meal_type=action.details.meal_type,
            voice_log_id=voice_log_id,
        )
        await self.tasks.enqueue(TaskKind.FETCH_FOOD_MACROS, {"food_name": description, "log_id": log_id})
        return [log_id], f"Logged {description}"

    async def _log_vitamin(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        name = (action.details.vitamin_name or "").strip()
        if not name:
            raise InvalidAction("Supplement action has no name.", reason="missing_vitamin_name")
        supplement = self.supplements.find_by_name(name)
        created = supplement is None
        if supplement is None:
            # First mention of an unknown supplement creates it.
            supplement = await self.supplements.create_supplement(
                name,
                dosage=action.details.dosage,
                source=VOICE_SOURCE,
            )
        intake = await self.supplements.record_intake(
            supplement.id, taken_at=logged_at, source=VOICE_SOURCE, voice_log_id=voice_log_id
        )
        prefix = "Added and took" if created else "Took"
        return [intake.id], f"{prefix} {supplement.name}"

    async def _add_vitamin(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        details = action.details
        name = (details.vitamin_name or "").strip()
        frequency = (details.frequency or "").strip()
        if not name:
            raise InvalidAction("New supplement has no name.", reason="missing_vitamin_name")
        if not frequency:
            raise InvalidAction("New supplement has no frequency.", reason="missing_frequency")
        times_per_day = details.times_per_day or _TIMES_PER_DAY.get(frequency.casefold(), 1)
        supplement = await self.supplements.create_supplement(
            name,
            dosage=details.dosage,
            frequency=frequency,
            times_per_day=times_per_day,
            source=VOICE_SOURCE,
        )
        return [supplement.id], f"Added supplement {supplement.name} ({frequency})"

    async def _log_symptom(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        symptoms = [item.strip() for item in action.details.symptoms or [] if item and item.strip()]
        if not symptoms:
            raise InvalidAction("Symptom action lists no symptoms.", reason="missing_symptoms")
        severity = parse_severity(action.details.severity)
        log_ids = [
            await self.symptoms.append_entry(
                symptom,
                severity,
                VOICE_SOURCE,
                logged_at=logged_at,
                voice_log_id=voice_log_id,
                notes=action.details.notes,
            )
            for symptom in symptoms
        ]
        return log_ids, f"Logged symptoms: {', '.join(symptoms)}"

    async def _log_puqe(
        self, action: CandidateAction, logged_at: datetime, voice_log_id: str | None
    ) -> tuple[list[str], str]:
        request_id = await self.puqe(action.details.notes, logged_at)
        return [request_id], "Opening PUQE score"
