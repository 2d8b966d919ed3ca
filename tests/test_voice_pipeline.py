from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from conftest import action, build_harness
from plany.core.actions.schemas import ActionKind
from plany.core.config import Settings
from plany.core.errors import PipelineBusy, ServiceErrorCode, ServiceUnavailable
from plany.core.http.retry import RetryPolicy
from plany.core.queue.schemas import TaskStatus
from plany.core.scheduler.jobs import run_maintenance
from plany.core.services.extraction import LLMActionExtractionService
from plany.core.services.openai_compat import OpenAICompatClient
from plany.core.stores.logs import LogKind
from plany.core.stores.voice_logs import VoiceCategory
from plany.core.voice.pipeline import PipelineState


async def _record(pipeline, audio: bytes = b"\x00\x01audio"):
    await pipeline.start_recording()
    pipeline.feed(audio)
    return await pipeline.stop_recording()


def test_sixteen_ounces_of_water(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="I just drank 16 ounces of water",
            actions=[action(ActionKind.LOG_WATER, amount="16", unit="oz")],
        )
        snapshot = await _record(harness.pipeline)
        return harness, snapshot

    harness, snapshot = asyncio.run(scenario())

    assert snapshot.state == PipelineState.COMPLETED
    assert snapshot.last_transcription == "I just drank 16 ounces of water"
    entries = harness.logs.list_entries(kind=LogKind.WATER)
    assert len(entries) == 1
    assert (entries[0].amount, entries[0].unit, entries[0].source) == (16.0, "oz", "voice")
    assert entries[0].voice_log_id == snapshot.voice_log_id
    assert [item.message for item in snapshot.executed] == ["Logged 16 oz of water"]
    assert harness.toasts.recent()[0].message == "Logged 16 oz of water"

    voice_log = harness.voice_logs.get(snapshot.voice_log_id)
    assert voice_log.transcription == "I just drank 16 ounces of water"
    assert voice_log.category == VoiceCategory.WATER
    assert (harness.voice_logs.audio_dir / voice_log.filename).read_bytes() == b"\x00\x01audio"


def test_three_bananas_keeps_quantity_and_enriches(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="I had 3 bananas",
            actions=[action(ActionKind.LOG_FOOD, item="3 bananas")],
        )
        snapshot = await _record(harness.pipeline)
        await harness.queue.drain()
        return harness, snapshot

    harness, snapshot = asyncio.run(scenario())

    entry = harness.logs.list_entries(kind=LogKind.FOOD)[0]
    assert entry.description == "3 bananas"
    assert harness.enrichment.calls == ["3 bananas"]
    assert entry.calories == 315
    assert [task.status for task in harness.queue.list_tasks()] == [TaskStatus.COMPLETED]
    assert snapshot.executed[0].log_id == entry.id


def test_extraction_exhausting_retries_returns_to_idle_without_entries(tmp_path) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503, request=request)

    async def no_sleep(_: float) -> None:
        return None

    async def scenario():
        harness = build_harness(tmp_path, transcript="I had 3 bananas")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            settings = Settings(state_dir=tmp_path, openai_api_key="sk-test-key-123456")
            compat = OpenAICompatClient(settings, client=client, retry_policy=RetryPolicy(max_attempts=3, sleep=no_sleep))
            harness.pipeline.extraction = LLMActionExtractionService(settings, compat=compat)
            with pytest.raises(ServiceUnavailable) as excinfo:
                await _record(harness.pipeline)
        return harness, excinfo.value

    harness, error = asyncio.run(scenario())

    assert calls["count"] == 3
    assert error.code == ServiceErrorCode.SERVER_ERROR
    snapshot = harness.pipeline.snapshot()
    assert snapshot.state == PipelineState.IDLE
    assert snapshot.error["error"] == "ServiceUnavailable"
    assert snapshot.error["remedy"]
    assert harness.logs.list_entries() == []
    assert harness.queue.list_tasks() == []


def test_empty_transcript_completes_without_extraction(tmp_path) -> None:
    async def scenario():
        harness = build_harness(tmp_path, transcript="   ", actions=[action(ActionKind.LOG_WATER, amount="8")])
        snapshot = await _record(harness.pipeline)
        return harness, snapshot

    harness, snapshot = asyncio.run(scenario())

    assert snapshot.state == PipelineState.COMPLETED
    assert harness.extraction.calls == []
    assert snapshot.executed == []
    assert harness.logs.list_entries() == []


def test_start_while_recording_stops_instead(tmp_path) -> None:
    async def scenario():
        harness = build_harness(tmp_path, transcript="water", actions=[action(ActionKind.LOG_WATER, amount="8")])
        await harness.pipeline.start_recording()
        snapshot = await harness.pipeline.start_recording()
        return harness, snapshot

    harness, snapshot = asyncio.run(scenario())

    assert snapshot.state == PipelineState.COMPLETED
    assert len(harness.transcription.calls) == 1
    assert len(harness.logs.list_entries()) == 1


def test_pipeline_rejects_start_while_recognizing(tmp_path) -> None:
    async def scenario():
        harness = build_harness(tmp_path, transcript="water")
        gate = asyncio.Event()
        original = harness.transcription.transcribe

        async def slow_transcribe(artifact):
            await gate.wait()
            return await original(artifact)

        harness.pipeline.transcription.transcribe = slow_transcribe
        await harness.pipeline.start_recording()
        stopping = asyncio.create_task(harness.pipeline.stop_recording())
        await asyncio.sleep(0)
        state_during = harness.pipeline.state
        with pytest.raises(PipelineBusy):
            await harness.pipeline.start_recording()
        with pytest.raises(PipelineBusy):
            await harness.pipeline.dismiss()
        gate.set()
        await stopping
        return harness, state_during

    harness, state_during = asyncio.run(scenario())

    assert state_during == PipelineState.RECOGNIZING
    assert harness.pipeline.state == PipelineState.COMPLETED


def test_log_another_and_dismiss_clear_previous_results(tmp_path) -> None:
    async def scenario():
        harness = build_harness(tmp_path, transcript="water", actions=[action(ActionKind.LOG_WATER, amount="8")])
        await _record(harness.pipeline)
        again = await harness.pipeline.start_recording()
        dismissed = await harness.pipeline.dismiss()
        return again, dismissed

    again, dismissed = asyncio.run(scenario())

    assert again.state == PipelineState.RECORDING
    assert again.executed == []
    assert again.last_transcription is None
    assert dismissed.state == PipelineState.IDLE


def test_low_confidence_actions_surface_as_pending(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="maybe some water",
            actions=[action(ActionKind.LOG_WATER, confidence=0.6, amount="8")],
        )
        snapshot = await _record(harness.pipeline)
        before = len(harness.logs.list_entries())
        await harness.executor.confirm(snapshot.pending[0].id)
        return harness, snapshot, before

    harness, snapshot, before = asyncio.run(scenario())

    assert snapshot.state == PipelineState.COMPLETED
    assert len(snapshot.pending) == 1
    assert before == 0
    assert harness.logs.list_entries()[0].voice_log_id == snapshot.voice_log_id


def test_deleting_last_referencing_entry_releases_audio(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="nausea and a headache",
            actions=[action(ActionKind.LOG_SYMPTOM, symptoms=["nausea", "headache"])],
        )
        snapshot = await _record(harness.pipeline)
        voice_log = harness.voice_logs.get(snapshot.voice_log_id)
        audio_path = harness.voice_logs.audio_dir / voice_log.filename
        first, second = harness.logs.list_entries()
        await harness.logs.delete(first.id)
        kept = audio_path.exists()
        await harness.logs.delete(second.id)
        return harness, snapshot, audio_path, kept

    harness, snapshot, audio_path, kept = asyncio.run(scenario())

    assert kept is True
    assert not audio_path.exists()
    assert harness.voice_logs.get(snapshot.voice_log_id) is None


def test_deleting_water_keeps_audio_referenced_by_supplement_intake(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="took my prenatal and drank a glass of water",
            actions=[
                action(ActionKind.LOG_VITAMIN, vitamin_name="Prenatal"),
                action(ActionKind.LOG_WATER, amount="8", unit="oz"),
            ],
        )
        snapshot = await _record(harness.pipeline)
        water = harness.logs.list_entries(kind=LogKind.WATER)[0]
        await harness.logs.delete(water.id)
        return harness, snapshot

    harness, snapshot = asyncio.run(scenario())

    intake = harness.supplements.list_intakes()[0]
    assert intake.voice_log_id == snapshot.voice_log_id
    voice_log = harness.voice_logs.get(snapshot.voice_log_id)
    assert voice_log is not None
    assert (harness.voice_logs.audio_dir / voice_log.filename).exists()


def test_maintenance_keeps_supplement_only_recordings(tmp_path) -> None:
    async def scenario():
        harness = build_harness(
            tmp_path,
            transcript="took my prenatal",
            actions=[action(ActionKind.LOG_VITAMIN, vitamin_name="Prenatal")],
        )
        snapshot = await _record(harness.pipeline)
        summary = await run_maintenance(
            harness.queue, harness.voice_logs, [harness.logs, harness.supplements], timedelta(hours=-1)
        )
        return harness, snapshot, summary

    harness, snapshot, summary = asyncio.run(scenario())

    assert summary == {"tasks_removed": 0, "audio_removed": 0}
    assert harness.voice_logs.get(snapshot.voice_log_id) is not None
