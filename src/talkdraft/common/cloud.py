"""Cloud transcription over OpenAI-compatible HTTP APIs (Groq, OpenAI)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests

from ..errors import TranscriptionError, TranscriptionErrorKind
from .debug import noop_debug
from .transcription import normalize_text


GROQ = "groq"
OPENAI = "openai"

PROVIDERS = {
    GROQ: ("https://api.groq.com/openai/v1", "whisper-large-v3-turbo"),
    OPENAI: ("https://api.openai.com/v1", "whisper-1"),
}


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason or ""
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return response.text.strip()


@dataclass(slots=True)
class CloudTranscriber:
    provider: str
    api_key: str
    model: str = ""
    language: Optional[str] = None
    translate: bool = False
    debug: Callable[[str], None] = noop_debug

    @property
    def endpoint(self) -> str:
        base, _model = PROVIDERS[self.provider]
        route = "translations" if self.translate else "transcriptions"
        return f"{base}/audio/{route}"

    @property
    def model_name(self) -> str:
        return self.model or PROVIDERS[self.provider][1]

    def transcribe(
        self,
        audio_path: str | Path,
        *,
        timeout_s: float = 10.0,
        cancel_flag: Callable[[], bool] | None = None,
    ) -> str:
        src = Path(audio_path)
        try:
            audio_bytes = src.read_bytes()
        except OSError as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.INVALID_AUDIO, f"Cannot read audio file '{src}': {exc}"
            ) from exc

        data = {"model": self.model_name, "response_format": "json"}
        if self.language and not self.translate:
            data["language"] = self.language
        self.debug(f"{self.provider} POST {self.endpoint} bytes={len(audio_bytes)} timeout={timeout_s}")
        try:
            response = requests.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                files={"file": (src.name, audio_bytes, "audio/wav")},
                data=data,
                timeout=timeout_s,
            )
        except requests.exceptions.Timeout as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.TIMEOUT, f"{self.provider} request timed out: {exc}"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.NETWORK, f"{self.provider} request failed: {exc}"
            ) from exc

        # requests cannot abort an in-flight call; discard the result instead
        if cancel_flag and cancel_flag():
            raise TranscriptionError(TranscriptionErrorKind.CANCELLED, "Transcription cancelled")

        if response.status_code != 200:
            message = _error_message(response)
            self.debug(f"{self.provider} status={response.status_code}: {message}")
            raise TranscriptionError(
                TranscriptionErrorKind.API_ERROR,
                f"{self.provider} API error {response.status_code}: {message}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.MALFORMED_RESPONSE, "Response is not JSON"
            ) from exc
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TranscriptionError(
                TranscriptionErrorKind.MALFORMED_RESPONSE, "Response has no 'text' field"
            )
        return normalize_text(text)
