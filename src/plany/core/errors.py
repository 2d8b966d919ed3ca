from __future__ import annotations

from enum import Enum


class ServiceErrorCode(str, Enum):
    NO_CREDENTIALS = "no_credentials"
    INVALID_RESPONSE = "invalid_response"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    DESERIALIZATION_ERROR = "deserialization_error"
    CLIENT_ERROR = "client_error"


_REMEDIES: dict[ServiceErrorCode, str] = {
    ServiceErrorCode.NO_CREDENTIALS: "Add your API key in settings to enable voice logging.",
    ServiceErrorCode.INVALID_RESPONSE: "Try again. If it keeps happening, record a shorter clip.",
    ServiceErrorCode.RATE_LIMITED: "Wait 30-60 seconds before trying again.",
    ServiceErrorCode.SERVER_ERROR: "This is a temporary service issue. Try again in 5-10 minutes.",
    ServiceErrorCode.NETWORK_ERROR: "Check your internet connection and try again.",
    ServiceErrorCode.DESERIALIZATION_ERROR: "Try again, phrasing the entry a little differently.",
    ServiceErrorCode.CLIENT_ERROR: "Verify your API key is correct and has not expired.",
}


class PlanyError(RuntimeError):
    """Base error. Carries a user-facing message and a suggested remedy."""

    default_remedy = "Try again."

    def __init__(self, message: str, *, remedy: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remedy = remedy or self.default_remedy

    def to_dict(self) -> dict[str, str]:
        return {"error": self.__class__.__name__, "message": self.message, "remedy": self.remedy}


class ServiceError(PlanyError):
    def __init__(
        self,
        message: str,
        *,
        code: ServiceErrorCode,
        service: str,
        status_code: int | None = None,
        remedy: str | None = None,
    ) -> None:
        super().__init__(message, remedy=remedy or _REMEDIES.get(code))
        self.code = code
        self.service = service
        self.status_code = status_code

    def to_dict(self) -> dict[str, str]:
        payload = super().to_dict()
        payload["code"] = self.code.value
        payload["service"] = self.service
        return payload


class ServiceUnavailable(ServiceError):
    """Credentials missing, service down, or transient retries exhausted."""


class TransientServiceError(ServiceError):
    """Rate limit, 5xx or network failure. Retried with backoff."""


class MalformedResponse(ServiceError):
    """Response could not be parsed into the expected schema. Not retried."""


class InvalidAction(PlanyError):
    default_remedy = "Try saying it again with a little more detail."

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class StorageFailure(PlanyError):
    default_remedy = "Check that the device has free storage space, then try again."


class PipelineBusy(PlanyError):
    default_remedy = "Wait for the current recording to finish processing."


class NotFound(PlanyError):
    default_remedy = "Refresh and try again."
