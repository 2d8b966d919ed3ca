from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _is_on(name: str, default: str = "off") -> bool:
    return os.getenv(name, default).strip().casefold() in {"1", "on", "true", "yes"}


def default_state_dir() -> Path:
    configured = os.getenv("PLANY_STATE_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".plany"


@dataclass(frozen=True)
class Settings:
    state_dir: Path
    confidence_threshold: float = 0.8
    water_default_amount: int = 8
    water_default_unit: str = "oz"
    task_max_retries: int = 3
    task_base_delay_s: float = 2.0
    task_retention_days: int = 7
    cleanup_every_minutes: int = 60
    audio_grace_hours: int = 24
    http_timeout_s: float = 60.0
    http_retries: int = 3
    http_backoff_base_s: float = 1.0
    http_backoff_max_s: float = 8.0
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    extraction_model: str = "gpt-5"
    enrichment_model: str = "gpt-5-mini"
    transcription_model: str = "whisper-1"
    toast_history: int = 50
    test_mode: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool((self.openai_api_key or "").strip())


def load_settings() -> Settings:
    threshold = min(1.0, max(0.0, _get_float_env("PLANY_CONFIDENCE_THRESHOLD", 0.8)))
    return Settings(
        state_dir=default_state_dir(),
        confidence_threshold=threshold,
        water_default_amount=max(1, _get_int_env("PLANY_WATER_DEFAULT_AMOUNT", 8)),
        water_default_unit=os.getenv("PLANY_WATER_DEFAULT_UNIT", "oz"),
        task_max_retries=max(1, _get_int_env("PLANY_TASK_MAX_RETRIES", 3)),
        task_base_delay_s=max(0.0, _get_float_env("PLANY_TASK_BASE_DELAY_S", 2.0)),
        task_retention_days=max(0, _get_int_env("PLANY_TASK_RETENTION_DAYS", 7)),
        cleanup_every_minutes=max(1, _get_int_env("PLANY_CLEANUP_EVERY_MINUTES", 60)),
        audio_grace_hours=max(0, _get_int_env("PLANY_AUDIO_GRACE_HOURS", 24)),
        http_timeout_s=max(0.1, _get_float_env("PLANY_HTTP_TIMEOUT_S", 60.0)),
        http_retries=max(1, _get_int_env("PLANY_HTTP_RETRIES", 3)),
        http_backoff_base_s=max(0.0, _get_float_env("PLANY_HTTP_BACKOFF_BASE_S", 1.0)),
        http_backoff_max_s=max(0.0, _get_float_env("PLANY_HTTP_BACKOFF_MAX_S", 8.0)),
        openai_api_key=os.getenv("PLANY_OPENAI_API_KEY") or None,
        openai_base_url=os.getenv("PLANY_OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        extraction_model=os.getenv("PLANY_EXTRACTION_MODEL", "gpt-5"),
        enrichment_model=os.getenv("PLANY_ENRICHMENT_MODEL", "gpt-5-mini"),
        transcription_model=os.getenv("PLANY_TRANSCRIPTION_MODEL", "whisper-1"),
        toast_history=max(1, _get_int_env("PLANY_TOAST_HISTORY", 50)),
        test_mode=_is_on("PLANY_TEST_MODE"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
