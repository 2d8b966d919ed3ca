from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from plany.core.actions.executor import ActionExecutor
from plany.core.actions.policy import ConfidencePolicy
from plany.core.actions.schemas import ActionDetails, ActionKind, CandidateAction
from plany.core.config import get_settings
from plany.core.notifications.toasts import ToastNotifier
from plany.core.queue.handlers import TaskHandlers
from plany.core.queue.manager import BackgroundTaskQueue
from plany.core.queue.schemas import QueuedTask, TaskKind
from plany.core.queue.store import TaskQueueStore
from plany.core.recording.schemas import AudioArtifact
from plany.core.recording.session import RecordingSession
from plany.core.services.enrichment import FoodImageAnalysis, FoodSuggestion, NutritionMacros
from plany.core.services.transcription import Transcript
from plany.core.stores.logs import FoodLog, HydrationLog, LogStore, SymptomLog
from plany.core.stores.puqe import PuqeRequestSink
from plany.core.stores.supplements import SupplementStore
from plany.core.stores.voice_logs import VoiceLogStore
from plany.core.voice.pipeline import VoicePipeline

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PLANY_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("PLANY_TEST_MODE", "on")
    monkeypatch.setenv("PLANY_LOG_TO_FILE", "off")
    monkeypatch.delenv("PLANY_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("PLANY_CONFIDENCE_THRESHOLD", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def action(kind: ActionKind, confidence: float = 0.95, **details: Any) -> CandidateAction:
    details.setdefault("timestamp", NOW.isoformat())
    return CandidateAction(kind=kind, confidence=confidence, details=ActionDetails(**details))


class FakeTranscription:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[AudioArtifact] = []

    async def transcribe(self, artifact: AudioArtifact) -> Transcript:
        self.calls.append(artifact)
        if self.error is not None:
            raise self.error
        return Transcript(text=self.text, duration=artifact.duration_s)


class FakeExtraction:
    def __init__(self, actions: list[CandidateAction] | None = None, error: Exception | None = None) -> None:
        self.actions = actions or []
        self.error = error
        self.calls: list[tuple[str, datetime]] = []

    async def extract(self, transcript: str, now: datetime) -> list[CandidateAction]:
        self.calls.append((transcript, now))
        if self.error is not None:
            raise self.error
        return list(self.actions)


class FakeEnrichment:
    def __init__(self, macros: NutritionMacros | None = None, failures: int = 0) -> None:
        self.macros = macros or NutritionMacros(calories=315, protein=4, carbs=81, fat=1)
        self.failures = failures
        self.calls: list[str] = []

    async def estimate_macros(self, food_description: str) -> NutritionMacros:
        self.calls.append(food_description)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("enrichment offline")
        return self.macros

    async def analyze_food_image(self, image_path: Path) -> FoodImageAnalysis:
        self.calls.append(str(image_path))
        return FoodImageAnalysis.model_validate(
            {
                "items": [
                    {
                        "name": "burger",
                        "quantity": "1",
                        "estimatedCalories": 700,
                        "protein": 35.0,
                        "carbs": 50.0,
                        "fat": 38.4,
                        "fiber": 3.0,
                    }
                ],
                "totalCalories": 700,
                "totalProtein": 35.0,
                "totalCarbs": 50.0,
                "totalFat": 38.4,
                "totalFiber": 3.0,
            }
        )

    async def suggest_foods(self, nausea_level: int, preferences: list[str] | None = None) -> list[FoodSuggestion]:
        self.calls.append(f"nausea:{nausea_level}")
        return [
            FoodSuggestion.model_validate(
                {
                    "food": "crackers",
                    "reason": "bland",
                    "nutritionalBenefit": "carbs",
                    "preparationTip": "keep by the bed",
                    "avoidIfHigh": False,
                }
            )
        ]


class RecordingEnqueuer:
    def __init__(self) -> None:
        self.calls: list[tuple[TaskKind, dict[str, Any]]] = []

    async def enqueue(self, kind: TaskKind, payload: dict[str, Any]) -> QueuedTask:
        self.calls.append((kind, payload))
        return QueuedTask(kind=kind, payload="{}")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class Harness:
    state_dir: Path
    logs: LogStore
    voice_logs: VoiceLogStore
    supplements: SupplementStore
    toasts: ToastNotifier
    queue: BackgroundTaskQueue
    executor: ActionExecutor
    pipeline: VoicePipeline
    transcription: FakeTranscription
    extraction: FakeExtraction
    enrichment: FakeEnrichment
    sleep: SleepRecorder
    puqe: PuqeRequestSink
    extra: dict[str, Any] = field(default_factory=dict)


def build_harness(
    state_dir: Path,
    *,
    transcript: str = "",
    actions: list[CandidateAction] | None = None,
    extraction_error: Exception | None = None,
    enrichment: FakeEnrichment | None = None,
    threshold: float = 0.8,
) -> Harness:
    voice_logs = VoiceLogStore(state_dir)
    supplements = SupplementStore(state_dir)
    logs = LogStore(state_dir, voice_logs=voice_logs, shared_with=[supplements])
    toasts = ToastNotifier()
    sleep = SleepRecorder()
    queue = BackgroundTaskQueue(TaskQueueStore(state_dir), max_retries=3, base_delay_s=2.0, sleep=sleep)
    food = FoodLog(logs)
    puqe = PuqeRequestSink(state_dir)
    executor = ActionExecutor(
        hydration=HydrationLog(logs),
        food=food,
        symptoms=SymptomLog(logs),
        supplements=supplements,
        toasts=toasts,
        tasks=queue,
        puqe=puqe,
        policy=ConfidencePolicy(threshold=threshold),
    )
    transcription = FakeTranscription(text=transcript)
    extraction = FakeExtraction(actions=actions, error=extraction_error)
    enrichment = enrichment or FakeEnrichment()
    TaskHandlers(enrichment=enrichment, food=food, extraction=extraction, executor=executor).register_all(queue)
    pipeline = VoicePipeline(
        recorder=RecordingSession(voice_logs.audio_dir),
        transcription=transcription,
        extraction=extraction,
        executor=executor,
        voice_logs=voice_logs,
        clock=lambda: NOW,
    )
    return Harness(
        state_dir=state_dir,
        logs=logs,
        voice_logs=voice_logs,
        supplements=supplements,
        toasts=toasts,
        queue=queue,
        executor=executor,
        pipeline=pipeline,
        transcription=transcription,
        extraction=extraction,
        enrichment=enrichment,
        sleep=sleep,
        puqe=puqe,
    )
