from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from plany.core.config import Settings
from plany.core.errors import MalformedResponse, ServiceErrorCode, ServiceUnavailable, StorageFailure
from plany.core.http.client import send
from plany.core.http.retry import RetryPolicy, build_retry_policy


class OpenAICompatClient:
    """Chat completions with a JSON-schema response format, plus multipart audio transcription."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings
        self.base_url = settings.openai_base_url.rstrip("/")
        self.client = client
        self.retry_policy = retry_policy or build_retry_policy(settings)
        self.logger = logging.getLogger("plany.services.openai")

    def _auth_headers(self, service: str) -> dict[str, str]:
        if not self.settings.has_api_key:
            raise ServiceUnavailable(
                f"{service} needs an API key and none is configured.",
                code=ServiceErrorCode.NO_CREDENTIALS,
                service=service,
            )
        return {"Authorization": f"Bearer {self.settings.openai_api_key}"}

    async def chat_json(
        self,
        *,
        service: str,
        model: str,
        system: str,
        user: str | list[dict[str, Any]],
        schema_name: str,
        schema: dict[str, Any],
        temperature: float = 0.7,
        max_tokens: int = 1200,
    ) -> dict[str, Any]:
        headers = self._auth_headers(service)
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            },
        }

        async def attempt() -> dict[str, Any]:
            response = await send(
                "POST",
                f"{self.base_url}/chat/completions",
                service=service,
                headers=headers,
                json=payload,
                timeout_s=self.settings.http_timeout_s,
                client=self.client,
            )
            return _message_json(response, service)

        return await self.retry_policy.run(attempt, service=service)

    async def transcribe(self, *, service: str, model: str, audio_path: Path) -> dict[str, Any]:
        headers = self._auth_headers(service)
        try:
            audio_bytes = audio_path.read_bytes()
        except OSError as exc:
            raise StorageFailure(f"Recording file could not be read: {audio_path.name}") from exc

        async def attempt() -> dict[str, Any]:
            response = await send(
                "POST",
                f"{self.base_url}/audio/transcriptions",
                service=service,
                headers=headers,
                data={"model": model, "response_format": "json"},
                files={"file": (audio_path.name, audio_bytes, _audio_content_type(audio_path))},
                timeout_s=self.settings.http_timeout_s,
                client=self.client,
            )
            return _response_json(response, service)

        return await self.retry_policy.run(attempt, service=service)


def _audio_content_type(path: Path) -> str:
    suffix = path.suffix.casefold()
    if suffix in {".m4a", ".mp4"}:
        return "audio/m4a"
    if suffix == ".wav":
        return "audio/wav"
    if suffix == ".mp3":
        return "audio/mpeg"
    return "application/octet-stream"


def _response_json(response: httpx.Response, service: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponse(
            f"{service} returned a response that is not JSON.",
            code=ServiceErrorCode.INVALID_RESPONSE,
            service=service,
            status_code=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise MalformedResponse(
            f"{service} returned an unexpected response shape.",
            code=ServiceErrorCode.INVALID_RESPONSE,
            service=service,
            status_code=response.status_code,
        )
    return data


def _message_json(response: httpx.Response, service: str) -> dict[str, Any]:
    data = _response_json(response, service)
    choices = data.get("choices")
    first = choices[0] if isinstance(choices, list) and choices else None
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponse(
            f"{service} returned no message content.",
            code=ServiceErrorCode.INVALID_RESPONSE,
            service=service,
            status_code=response.status_code,
        )
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise MalformedResponse(
            f"{service} returned content that could not be decoded.",
            code=ServiceErrorCode.DESERIALIZATION_ERROR,
            service=service,
        ) from exc
    if not isinstance(parsed, dict):
        raise MalformedResponse(
            f"{service} returned content that is not a JSON object.",
            code=ServiceErrorCode.DESERIALIZATION_ERROR,
            service=service,
        )
    return parsed
