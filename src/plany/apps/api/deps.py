from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from plany.core.actions.executor import ActionExecutor
from plany.core.actions.policy import ConfidencePolicy
from plany.core.config import Settings, get_settings
from plany.core.notifications.toasts import ToastNotifier
from plany.core.queue.handlers import TaskHandlers
from plany.core.queue.manager import BackgroundTaskQueue
from plany.core.queue.store import TaskQueueStore
from plany.core.recording.session import RecordingSession
from plany.core.scheduler.scheduler import SchedulerService
from plany.core.services.enrichment import EnrichmentService, LLMEnrichmentService
from plany.core.services.extraction import ActionExtractionService, LLMActionExtractionService
from plany.core.services.openai_compat import OpenAICompatClient
from plany.core.services.transcription import OpenAITranscriptionService, TranscriptionService
from plany.core.stores.logs import FoodLog, HydrationLog, LogStore, SymptomLog
from plany.core.stores.puqe import PuqeRequestSink
from plany.core.stores.supplements import SupplementStore
from plany.core.stores.voice_logs import VoiceLogStore
from plany.core.voice.pipeline import VoicePipeline


def _settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_voice_log_store() -> VoiceLogStore:
    return VoiceLogStore(state_dir=_settings().state_dir)


@lru_cache(maxsize=1)
def get_log_store() -> LogStore:
    return LogStore(
        state_dir=_settings().state_dir,
        voice_logs=get_voice_log_store(),
        shared_with=[get_supplement_store()],
    )


@lru_cache(maxsize=1)
def get_supplement_store() -> SupplementStore:
    return SupplementStore(state_dir=_settings().state_dir)


@lru_cache(maxsize=1)
def get_toast_notifier() -> ToastNotifier:
    return ToastNotifier(history=_settings().toast_history)


@lru_cache(maxsize=1)
def get_openai_client() -> OpenAICompatClient:
    return OpenAICompatClient(_settings())


@lru_cache(maxsize=1)
def get_transcription_service() -> TranscriptionService:
    return OpenAITranscriptionService(_settings(), compat=get_openai_client())


@lru_cache(maxsize=1)
def get_extraction_service() -> ActionExtractionService:
    return LLMActionExtractionService(_settings(), compat=get_openai_client())


@lru_cache(maxsize=1)
def get_enrichment_service() -> EnrichmentService:
    return LLMEnrichmentService(_settings(), compat=get_openai_client())


@lru_cache(maxsize=1)
def get_task_queue() -> BackgroundTaskQueue:
    settings = _settings()
    return BackgroundTaskQueue(
        TaskQueueStore(state_dir=settings.state_dir),
        max_retries=settings.task_max_retries,
        base_delay_s=settings.task_base_delay_s,
        retention=timedelta(days=settings.task_retention_days),
    )


@lru_cache(maxsize=1)
def get_executor() -> ActionExecutor:
    settings = _settings()
    logs = get_log_store()
    queue = get_task_queue()
    food = FoodLog(logs)
    executor = ActionExecutor(
        hydration=HydrationLog(logs),
        food=food,
        symptoms=SymptomLog(logs),
        supplements=get_supplement_store(),
        toasts=get_toast_notifier(),
        tasks=queue,
        puqe=PuqeRequestSink(state_dir=settings.state_dir),
        policy=ConfidencePolicy(threshold=settings.confidence_threshold),
        water_default_amount=settings.water_default_amount,
        water_default_unit=settings.water_default_unit,
    )
    TaskHandlers(
        enrichment=get_enrichment_service(),
        food=food,
        extraction=get_extraction_service(),
        executor=executor,
    ).register_all(queue)
    return executor


@lru_cache(maxsize=1)
def get_pipeline() -> VoicePipeline:
    return VoicePipeline(
        recorder=RecordingSession(get_voice_log_store().audio_dir),
        transcription=get_transcription_service(),
        extraction=get_extraction_service(),
        executor=get_executor(),
        voice_logs=get_voice_log_store(),
    )


@lru_cache(maxsize=1)
def get_scheduler_service() -> SchedulerService:
    return SchedulerService(_settings())
