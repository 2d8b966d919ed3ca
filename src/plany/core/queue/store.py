from __future__ import annotations

import logging
from pathlib import Path

from plany.core.stores.jsonfile import dump_records, read_json, validate_records, write_json_atomic

from .schemas import QueuedTask, TaskStatus


class TaskQueueStore:
    def __init__(self, state_dir: Path) -> None:
        self.path = state_dir / "task_queue.json"
        self.logger = logging.getLogger("plany.queue.store")

    def load(self) -> list[QueuedTask]:
        tasks = validate_records(read_json(self.path, []), QueuedTask)
        for task in tasks:
            # An attempt that was running when the process stopped never finished.
            if task.status == TaskStatus.PROCESSING:
                task.touch(TaskStatus.PENDING)
        return tasks

    def save(self, tasks: list[QueuedTask]) -> None:
        write_json_atomic(self.path, dump_records(tasks))
