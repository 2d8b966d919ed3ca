from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from plany.core.config import Settings
from plany.core.errors import (
    MalformedResponse,
    ServiceErrorCode,
    ServiceUnavailable,
    TransientServiceError,
)
from plany.core.http.client import send
from plany.core.http.retry import RetryPolicy
from plany.core.services.openai_compat import OpenAICompatClient


async def _noop_sleep(_: float) -> None:
    return None


def _send_with_status(status: int) -> httpx.Response:
    async def scenario() -> httpx.Response:
        transport = httpx.MockTransport(lambda request: httpx.Response(status, request=request, json={}))
        async with httpx.AsyncClient(transport=transport) as client:
            return await send("POST", "http://llm.local/v1/chat/completions", service="extraction", client=client)

    return asyncio.run(scenario())


def test_send_returns_successful_response() -> None:
    assert _send_with_status(200).status_code == 200


def test_rate_limit_is_transient() -> None:
    with pytest.raises(TransientServiceError) as excinfo:
        _send_with_status(429)
    assert excinfo.value.code == ServiceErrorCode.RATE_LIMITED
    assert excinfo.value.status_code == 429


def test_server_error_is_transient() -> None:
    with pytest.raises(TransientServiceError) as excinfo:
        _send_with_status(502)
    assert excinfo.value.code == ServiceErrorCode.SERVER_ERROR


def test_bad_credentials_fail_immediately() -> None:
    with pytest.raises(ServiceUnavailable) as excinfo:
        _send_with_status(401)
    assert excinfo.value.code == ServiceErrorCode.CLIENT_ERROR
    assert "API key" in excinfo.value.message


def test_network_failure_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await send("GET", "http://llm.local/v1/models", service="transcription", client=client)

    with pytest.raises(TransientServiceError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.code == ServiceErrorCode.NETWORK_ERROR


def _settings(tmp_path: Path, api_key: str | None = "sk-test-key-123456") -> Settings:
    return Settings(state_dir=tmp_path, openai_api_key=api_key, openai_base_url="http://llm.local/v1")


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_chat_json_without_credentials_never_calls_the_service(tmp_path) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, request=request, json=_completion("{}"))

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            compat = OpenAICompatClient(_settings(tmp_path, api_key=None), client=client)
            await compat.chat_json(
                service="extraction",
                model="m",
                system="s",
                user="u",
                schema_name="x",
                schema={"type": "object"},
            )

    with pytest.raises(ServiceUnavailable) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.code == ServiceErrorCode.NO_CREDENTIALS
    assert calls["count"] == 0


def test_chat_json_retries_server_errors_then_decodes_content(tmp_path) -> None:
    calls = {"count": 0}
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer sk-test-key-123456"
        if calls["count"] < 3:
            return httpx.Response(500, request=request)
        return httpx.Response(200, request=request, json=_completion('{"calories": 105}'))

    async def scenario() -> dict:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            compat = OpenAICompatClient(
                _settings(tmp_path),
                client=client,
                retry_policy=RetryPolicy(max_attempts=3, sleep=_noop_sleep),
            )
            return await compat.chat_json(
                service="enrichment",
                model="gpt-5-mini",
                system="nutrition",
                user="1 banana",
                schema_name="food_macros_response",
                schema={"type": "object"},
            )

    assert asyncio.run(scenario()) == {"calories": 105}
    assert calls["count"] == 3
    assert seen[0]["response_format"]["type"] == "json_schema"
    assert seen[0]["response_format"]["json_schema"]["name"] == "food_macros_response"


def test_chat_json_undecodable_content_is_not_retried(tmp_path) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, request=request, json=_completion("not json at all"))

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            compat = OpenAICompatClient(
                _settings(tmp_path),
                client=client,
                retry_policy=RetryPolicy(max_attempts=3, sleep=_noop_sleep),
            )
            await compat.chat_json(
                service="extraction",
                model="m",
                system="s",
                user="u",
                schema_name="x",
                schema={"type": "object"},
            )

    with pytest.raises(MalformedResponse) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.code == ServiceErrorCode.DESERIALIZATION_ERROR
    assert calls["count"] == 1


def test_transcribe_posts_multipart_audio(tmp_path) -> None:
    audio = tmp_path / "clip.m4a"
    audio.write_bytes(b"fake-audio")
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["content_type"] = request.headers["Content-Type"]
        captured["body"] = request.content
        return httpx.Response(200, request=request, json={"text": "I drank water", "language": "en"})

    async def scenario() -> dict:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            compat = OpenAICompatClient(_settings(tmp_path), client=client)
            return await compat.transcribe(service="transcription", model="whisper-1", audio_path=audio)

    payload = asyncio.run(scenario())

    assert payload["text"] == "I drank water"
    assert captured["path"] == "/v1/audio/transcriptions"
    assert str(captured["content_type"]).startswith("multipart/form-data")
    assert b"whisper-1" in captured["body"]
    assert b"fake-audio" in captured["body"]
