from .client import close_http_client, get_http_client, http_status_message, send
from .retry import RetryPolicy, build_retry_policy

__all__ = [
    "get_http_client",
    "close_http_client",
    "send",
    "http_status_message",
    "RetryPolicy",
    "build_retry_policy",
]
