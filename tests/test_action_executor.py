from __future__ import annotations

import asyncio
import json

import pytest

from conftest import NOW, RecordingEnqueuer, SleepRecorder, action
from plany.core.actions.executor import ActionExecutor, parse_severity
from plany.core.actions.policy import ConfidencePolicy
from plany.core.actions.schemas import ActionKind
from plany.core.errors import NotFound
from plany.core.notifications.toasts import ToastNotifier
from plany.core.queue.manager import BackgroundTaskQueue
from plany.core.queue.schemas import TaskKind
from plany.core.queue.store import TaskQueueStore
from plany.core.stores.logs import FoodLog, HydrationLog, LogKind, LogStore, SymptomLog
from plany.core.stores.puqe import PuqeRequestSink
from plany.core.stores.supplements import SupplementStore


def _executor(tmp_path, threshold: float = 0.8):
    logs = LogStore(tmp_path)
    supplements = SupplementStore(tmp_path)
    toasts = ToastNotifier()
    tasks = RecordingEnqueuer()
    executor = ActionExecutor(
        hydration=HydrationLog(logs),
        food=FoodLog(logs),
        symptoms=SymptomLog(logs),
        supplements=supplements,
        toasts=toasts,
        tasks=tasks,
        puqe=PuqeRequestSink(tmp_path),
        policy=ConfidencePolicy(threshold=threshold),
    )
    return executor, logs, supplements, toasts, tasks


def test_confidence_at_threshold_waits_for_confirmation(tmp_path) -> None:
    async def scenario():
        executor, logs, _, _, _ = _executor(tmp_path)
        result = await executor.execute_batch(
            [
                action(ActionKind.LOG_WATER, confidence=0.8, amount="10", unit="oz"),
                action(ActionKind.LOG_WATER, confidence=0.81, amount="12", unit="oz"),
            ]
        )
        return executor, logs, result

    executor, logs, result = asyncio.run(scenario())

    assert len(result.executed) == 1
    assert result.executed[0].action.details.amount == "12"
    assert [item.action.details.amount for item in result.pending] == ["10"]
    assert [entry.amount for entry in logs.list_entries()] == [12.0]
    assert executor.list_pending()[0].id == result.pending[0].id


def test_confirm_applies_pending_action_and_reject_discards(tmp_path) -> None:
    async def scenario():
        executor, logs, _, toasts, _ = _executor(tmp_path)
        result = await executor.execute_batch(
            [
                action(ActionKind.LOG_WATER, confidence=0.5, amount="10", unit="oz"),
                action(ActionKind.LOG_WATER, confidence=0.5, amount="20", unit="oz"),
            ]
        )
        first, second = result.pending
        executed = await executor.confirm(first.id)
        executor.reject(second.id)
        with pytest.raises(NotFound):
            await executor.confirm(second.id)
        return executed, logs, executor, toasts

    executed, logs, executor, toasts = asyncio.run(scenario())

    assert executed.message == "Logged 10 oz of water"
    assert [entry.amount for entry in logs.list_entries()] == [10.0]
    assert executor.list_pending() == []
    assert [toast.message for toast in toasts.recent()] == ["Logged 10 oz of water"]


def test_water_without_numeric_amount_uses_default(tmp_path) -> None:
    async def scenario():
        executor, logs, _, _, _ = _executor(tmp_path)
        await executor.execute_batch([action(ActionKind.LOG_WATER, amount="some", unit="water")])
        return logs

    entry = asyncio.run(scenario()).list_entries()[0]
    assert entry.kind == LogKind.WATER
    assert entry.amount == 8.0
    assert entry.unit == "oz"
    assert entry.source == "voice"


def test_food_enqueues_macros_task_for_new_log(tmp_path) -> None:
    async def scenario():
        executor, logs, _, _, tasks = _executor(tmp_path)
        result = await executor.execute_batch([action(ActionKind.LOG_FOOD, item="3 bananas", meal_type="snack")])
        return result, logs, tasks

    result, logs, tasks = asyncio.run(scenario())

    entry = logs.list_entries()[0]
    assert entry.description == "3 bananas"
    assert entry.meal_type == "snack"
    assert entry.logged_at == NOW
    assert tasks.calls == [(TaskKind.FETCH_FOOD_MACROS, {"food_name": "3 bananas", "log_id": entry.id})]
    assert result.executed[0].log_id == entry.id


def test_vitamin_is_created_once_then_matched(tmp_path) -> None:
    async def scenario():
        executor, _, supplements, _, _ = _executor(tmp_path)
        first = await executor.execute_batch([action(ActionKind.LOG_VITAMIN, vitamin_name="Prenatal Vitamin")])
        second = await executor.execute_batch([action(ActionKind.LOG_VITAMIN, vitamin_name="prenatal")])
        return supplements, first, second

    supplements, first, second = asyncio.run(scenario())

    created = supplements.list_supplements()
    assert [item.name for item in created] == ["Prenatal Vitamin"]
    assert created[0].source == "voice"
    assert len(supplements.list_intakes(created[0].id)) == 2
    assert first.executed[0].message == "Added and took Prenatal Vitamin"
    assert second.executed[0].message == "Took Prenatal Vitamin"


def test_add_new_vitamin_requires_frequency(tmp_path) -> None:
    async def scenario():
        executor, _, supplements, _, _ = _executor(tmp_path)
        result = await executor.execute_batch(
            [
                action(ActionKind.ADD_NEW_VITAMIN, vitamin_name="Iron"),
                action(ActionKind.ADD_NEW_VITAMIN, vitamin_name="Vitamin D", frequency="twice daily", dosage="1000 IU"),
            ]
        )
        return supplements, result

    supplements, result = asyncio.run(scenario())

    assert [item.reason for item in result.skipped] == ["missing_frequency"]
    created = supplements.list_supplements()
    assert len(created) == 1
    assert created[0].times_per_day == 2
    assert created[0].dosage == "1000 IU"


def test_symptoms_create_one_entry_each_with_mapped_severity(tmp_path) -> None:
    async def scenario():
        executor, logs, _, _, _ = _executor(tmp_path)
        await executor.execute_batch([action(ActionKind.LOG_SYMPTOM, symptoms=["nausea", "headache"], severity="Mild")])
        return logs

    entries = asyncio.run(scenario()).list_entries(kind=LogKind.SYMPTOM)
    assert sorted(entry.description for entry in entries) == ["headache", "nausea"]
    assert {entry.severity for entry in entries} == {2}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("mild", 2), ("slight", 2), ("medium", 3), ("heavy", 4), ("bad", 4), (None, 3), ("excruciating", 3), ("5", 5), ("9", 3)],
)
def test_parse_severity(raw, expected) -> None:
    assert parse_severity(raw) == expected


def test_actions_without_valid_timestamp_are_skipped_and_batch_continues(tmp_path) -> None:
    async def scenario():
        executor, logs, _, _, _ = _executor(tmp_path)
        result = await executor.execute_batch(
            [
                action(ActionKind.LOG_WATER, amount="8", unit="oz", timestamp=None),
                action(ActionKind.LOG_WATER, amount="8", unit="oz", timestamp="yesterday-ish"),
                action(ActionKind.LOG_FOOD, item="toast"),
            ]
        )
        return logs, result

    logs, result = asyncio.run(scenario())

    assert [item.reason for item in result.skipped] == ["missing_timestamp", "invalid_timestamp"]
    assert [entry.description for entry in logs.list_entries()] == ["toast"]


def test_unknown_and_puqe_actions_do_not_touch_logs(tmp_path) -> None:
    async def scenario():
        executor, logs, _, toasts, _ = _executor(tmp_path)
        result = await executor.execute_batch(
            [
                action(ActionKind.UNKNOWN, confidence=0.99),
                action(ActionKind.LOG_PUQE_SCORE, notes="vomited twice today"),
            ]
        )
        return logs, toasts, result

    logs, toasts, result = asyncio.run(scenario())

    assert logs.list_entries() == []
    assert [item.reason for item in result.skipped] == ["unknown"]
    assert [toast.message for toast in toasts.recent()] == ["Opening PUQE score"]
    lines = (tmp_path / "puqe_requests.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["notes"] == "vomited twice today"


def test_storage_failure_skips_only_that_action(tmp_path) -> None:
    (tmp_path / "task_queue.json").mkdir()

    async def scenario():
        logs = LogStore(tmp_path)
        queue = BackgroundTaskQueue(TaskQueueStore(tmp_path), sleep=SleepRecorder())
        executor = ActionExecutor(
            hydration=HydrationLog(logs),
            food=FoodLog(logs),
            symptoms=SymptomLog(logs),
            supplements=SupplementStore(tmp_path),
            toasts=ToastNotifier(),
            tasks=queue,
            puqe=PuqeRequestSink(tmp_path),
        )
        result = await executor.execute_batch(
            [
                action(ActionKind.LOG_FOOD, item="toast"),
                action(ActionKind.LOG_WATER, amount="8", unit="oz"),
            ]
        )
        return logs, queue, result

    logs, queue, result = asyncio.run(scenario())

    assert [item.reason for item in result.skipped] == ["storage_failure"]
    assert result.skipped[0].message.startswith("Could not save task_queue.json")
    assert [item.message for item in result.executed] == ["Logged 8 oz of water"]
    assert sorted(entry.kind for entry in logs.list_entries()) == [LogKind.FOOD, LogKind.WATER]
    assert queue.list_tasks() == []
