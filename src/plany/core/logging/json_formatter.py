from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from .context import get_log_context
from .redact import redact_string


def _error_fields(exc: BaseException) -> dict[str, Any]:
    # PlanyError carries a user-facing remedy and, for service errors, a code.
    fields: dict[str, Any] = {}
    for attr in ("remedy", "code", "service", "status_code"):
        value = getattr(exc, attr, None)
        if value is None:
            continue
        fields[f"err_{attr}"] = getattr(value, "value", value)
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then context and structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts_iso_utc": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_string(record.getMessage()),
            **get_log_context(),
        }

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            for key, value in extra_fields.items():
                payload[key] = redact_string(value) if isinstance(value, str) else value

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else type(exc).__name__
            payload["exc_msg"] = redact_string(str(exc))
            payload.update(_error_fields(exc))
            payload["stack"] = "".join(traceback.format_exception(exc_type, exc, exc_tb))

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
