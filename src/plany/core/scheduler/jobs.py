from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta

from plany.core.queue.manager import BackgroundTaskQueue
from plany.core.stores.voice_logs import VoiceLogReferences, VoiceLogStore, referenced_by

logger = logging.getLogger("plany.scheduler.jobs")


async def run_maintenance(
    queue: BackgroundTaskQueue,
    voice_logs: VoiceLogStore,
    references: Sequence[VoiceLogReferences],
    audio_grace: timedelta,
) -> dict[str, int]:
    tasks_removed = await queue.cleanup_completed()
    audio_removed = await voice_logs.sweep_orphans(referenced_by(*references), audio_grace)
    summary = {"tasks_removed": tasks_removed, "audio_removed": len(audio_removed)}
    logger.info("maintenance_complete", extra={"extra_fields": summary})
    return summary
