from .context import get_log_context, log_context, reset_context, set_context
from .json_formatter import JSONFormatter
from .redact import redact_string
from .setup import configure_logging

__all__ = [
    "JSONFormatter",
    "configure_logging",
    "get_log_context",
    "log_context",
    "redact_string",
    "reset_context",
    "set_context",
]
