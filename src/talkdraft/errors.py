"""Error taxonomy for TalkDraft.

Capture errors come from the microphone stream, transcription errors from the
engine and its transports, session errors from invalid lifecycle transitions.
"""

from __future__ import annotations

from enum import Enum


class TalkDraftError(Exception):
    """Base exception for all TalkDraft errors."""


class CaptureErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    STREAM_FAILED = "stream_failed"


class CaptureError(TalkDraftError):
    def __init__(self, kind: CaptureErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class TranscriptionErrorKind(str, Enum):
    NO_BACKEND = "no_backend"
    NETWORK = "network"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    MALFORMED_RESPONSE = "malformed_response"
    PROCESS_FAILED = "process_failed"
    PROCESS_LAUNCH = "process_launch"
    MODEL_NOT_FOUND = "model_not_found"
    INVALID_AUDIO = "invalid_audio"
    CANCELLED = "cancelled"


_TRANSIENT_KINDS = {
    TranscriptionErrorKind.NETWORK,
    TranscriptionErrorKind.TIMEOUT,
    TranscriptionErrorKind.PROCESS_LAUNCH,
}


class TranscriptionError(TalkDraftError):
    def __init__(
        self,
        kind: TranscriptionErrorKind,
        message: str = "",
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether another attempt could plausibly succeed."""
        if self.kind in _TRANSIENT_KINDS:
            return True
        if self.kind is TranscriptionErrorKind.API_ERROR and self.status_code is not None:
            return self.status_code == 429 or self.status_code >= 500
        return False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class BackendUnavailableError(TranscriptionError):
    """Raised when a forced backend is missing its API key or executable."""

    def __init__(self, message: str) -> None:
        super().__init__(TranscriptionErrorKind.NO_BACKEND, message)


class SessionError(TalkDraftError):
    """Raised on an invalid recording session transition."""
