from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

NETWORK_ERROR = "network_error"
HTTP_ERROR = "http_error"
NOT_FOUND = "not_found"
INVALID_RESPONSE = "invalid_response"
INVALID_INPUT = "invalid_input"
MISSING_MEDIA = "missing_media"
DOWNLOAD_FAILED = "download_failed"
TRANSCRIPTION_FAILED = "transcription_failed"
AI_ERROR = "ai_error"
SEND_FAILED = "send_failed"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown", details: Optional[dict[str, Any]] = None) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, details=details)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    @property
    def is_transient(self) -> bool:
        """True when retrying the same call may succeed."""
        if self.ok:
            return False
        if self.error_code == NETWORK_ERROR:
            return True
        status_code = (self.details or {}).get("status_code")
        return self.error_code == HTTP_ERROR and isinstance(status_code, int) and status_code >= 500
