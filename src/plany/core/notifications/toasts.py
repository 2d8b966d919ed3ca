from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class Toast(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ToastNotifier:
    def __init__(self, history: int = 50) -> None:
        self._history: deque[Toast] = deque(maxlen=max(1, history))
        self.logger = logging.getLogger("plany.notifications.toasts")

    def notify(self, message: str) -> Toast:
        toast = Toast(message=message)
        self._history.append(toast)
        self.logger.info("toast", extra={"extra_fields": {"toast_id": toast.id, "message": message}})
        return toast

    def recent(self, limit: int = 20) -> list[Toast]:
        if limit <= 0:
            return []
        return list(reversed(self._history))[:limit]
