from __future__ import annotations

import os
import threading
from typing import Any

import httpx

from plany.core.errors import ServiceErrorCode, ServiceUnavailable, TransientServiceError

_DEFAULT_TIMEOUT_S = 60.0
_DEFAULT_CONNECT_TIMEOUT_S = 10.0
_DEFAULT_USER_AGENT = "Plany/1.0"

_client: httpx.AsyncClient | None = None
_client_lock = threading.Lock()


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _build_timeout(total_s: float | None = None) -> httpx.Timeout:
    read_total = max(0.1, total_s if total_s is not None else _get_float_env("PLANY_HTTP_TIMEOUT_S", _DEFAULT_TIMEOUT_S))
    connect_s = max(0.1, _get_float_env("PLANY_HTTP_CONNECT_TIMEOUT_S", _DEFAULT_CONNECT_TIMEOUT_S))
    return httpx.Timeout(read_total, connect=min(connect_s, read_total))


def get_http_client() -> httpx.AsyncClient:
    global _client
    if _client is not None:
        return _client

    with _client_lock:
        if _client is None:
            user_agent = os.getenv("PLANY_HTTP_USER_AGENT", _DEFAULT_USER_AGENT)
            _client = httpx.AsyncClient(timeout=_build_timeout(), headers={"User-Agent": user_agent})
    return _client


async def close_http_client() -> None:
    global _client
    client = _client
    _client = None
    if client is not None:
        await client.aclose()


def http_status_message(status_code: int, service: str) -> str:
    if status_code == 400:
        return f"{service} rejected the request as malformed."
    if status_code == 401:
        return f"{service} rejected the API key."
    if status_code == 403:
        return f"{service} refused access. The API key may not have permission for this operation."
    if status_code == 413:
        return "The recording is too large. Record a shorter clip."
    if status_code == 429:
        return f"{service} rate limit exceeded."
    if status_code >= 500:
        return f"{service} server error ({status_code}). The service is temporarily unavailable."
    return f"{service} returned HTTP {status_code}."


async def send(
    method: str,
    url: str,
    *,
    service: str,
    headers: dict[str, str] | None = None,
    json: Any = None,
    data: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
    timeout_s: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    """Single attempt. Failures are classified into the service error taxonomy; retries are the caller's policy."""
    active = client or get_http_client()
    try:
        response = await active.request(
            method,
            url,
            headers=headers,
            json=json,
            data=data,
            files=files,
            timeout=_build_timeout(timeout_s) if timeout_s is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except httpx.TimeoutException as exc:
        raise TransientServiceError(
            f"{service} did not respond in time.",
            code=ServiceErrorCode.NETWORK_ERROR,
            service=service,
        ) from exc
    except (httpx.ConnectError, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
        raise TransientServiceError(
            f"Could not reach {service}: {exc.__class__.__name__}",
            code=ServiceErrorCode.NETWORK_ERROR,
            service=service,
        ) from exc
    except httpx.HTTPError as exc:
        raise ServiceUnavailable(
            f"{service} request failed: {exc.__class__.__name__}",
            code=ServiceErrorCode.NETWORK_ERROR,
            service=service,
        ) from exc

    status = response.status_code
    if 200 <= status < 300:
        return response
    message = http_status_message(status, service)
    if status == 429:
        raise TransientServiceError(message, code=ServiceErrorCode.RATE_LIMITED, service=service, status_code=status)
    if status >= 500:
        raise TransientServiceError(message, code=ServiceErrorCode.SERVER_ERROR, service=service, status_code=status)
    raise ServiceUnavailable(message, code=ServiceErrorCode.CLIENT_ERROR, service=service, status_code=status)
