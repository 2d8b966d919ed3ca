from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TypeVar

from plany.core.config import Settings
from plany.core.errors import MalformedResponse, ServiceError, ServiceUnavailable, TransientServiceError

T = TypeVar("T")

logger = logging.getLogger("plany.http.retry")

DEFAULT_RETRYABILITY: Mapping[type[BaseException], bool] = {
    TransientServiceError: True,
    ServiceUnavailable: False,
    MalformedResponse: False,
}


@dataclass
class RetryPolicy:
    """Capped exponential backoff shared by every external service call."""

    max_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_max_s: float = 8.0
    retryability: Mapping[type[BaseException], bool] = field(default_factory=lambda: dict(DEFAULT_RETRYABILITY))
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def is_retryable(self, exc: BaseException) -> bool:
        for klass in type(exc).__mro__:
            if klass in self.retryability:
                return self.retryability[klass]
        return False

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_max_s, self.backoff_base_s * (2**attempt)) * (0.5 + random.random())

    async def run(self, operation: Callable[[], Awaitable[T]], *, service: str) -> T:
        attempts = max(1, self.max_attempts)
        attempt = 0
        while True:
            try:
                return await operation()
            except ServiceError as exc:
                if not self.is_retryable(exc):
                    raise
                attempt += 1
                if attempt >= attempts:
                    raise ServiceUnavailable(
                        f"{exc.message} Gave up after {attempts} attempts.",
                        code=exc.code,
                        service=service,
                        status_code=exc.status_code,
                    ) from exc
                delay = self.delay_for(attempt - 1)
                logger.warning(
                    "service_retry",
                    extra={
                        "extra_fields": {
                            "service": service,
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "delay_s": round(delay, 3),
                            "code": exc.code.value,
                        }
                    },
                )
            await self.sleep(delay)


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.http_retries,
        backoff_base_s=settings.http_backoff_base_s,
        backoff_max_s=settings.http_backoff_max_s,
    )
