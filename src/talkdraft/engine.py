"""Backend-agnostic transcription with backend detection and retry."""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Sequence

from .common import cloud
from .common.cloud import CloudTranscriber
from .common.debug import noop_debug
from .common.encoding import pcm_to_wav
from .common.settings import Settings
from .common.transcription import (
    OPENAI_WHISPER,
    WHISPER_CPP,
    WHISPERKIT,
    LocalTranscriber,
)
from .errors import BackendUnavailableError, TranscriptionError, TranscriptionErrorKind


class BackendKind(str, Enum):
    GROQ = "groq"
    OPENAI = "openai"
    WHISPER_CPP = WHISPER_CPP
    WHISPERKIT = WHISPERKIT
    OPENAI_WHISPER = OPENAI_WHISPER
    UNAVAILABLE = "unavailable"

    @property
    def is_cloud(self) -> bool:
        return self in (BackendKind.GROQ, BackendKind.OPENAI)


# Probed in this order; the first executable found wins
LOCAL_PROBE_ORDER: tuple[BackendKind, ...] = (
    BackendKind.WHISPER_CPP,
    BackendKind.WHISPERKIT,
    BackendKind.OPENAI_WHISPER,
)

EXECUTABLE_NAMES: dict[BackendKind, tuple[str, ...]] = {
    BackendKind.WHISPER_CPP: ("whisper-cli", "whisper-cpp"),
    BackendKind.WHISPERKIT: ("whisperkit-cli",),
    BackendKind.OPENAI_WHISPER: ("whisper",),
}

API_KEY_ENV = {
    BackendKind.GROQ: "GROQ_API_KEY",
    BackendKind.OPENAI: "OPENAI_API_KEY",
}


def default_search_dirs() -> list[Path]:
    return [
        Path("/opt/homebrew/bin"),
        Path("/usr/local/bin"),
        Path.home() / ".local" / "bin",
    ]


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


@dataclass(frozen=True)
class Backend:
    """Result of backend detection; immutable once produced."""

    kind: BackendKind
    executable: Optional[str] = None
    api_key: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.kind is not BackendKind.UNAVAILABLE

    def describe(self) -> str:
        if self.kind.is_cloud:
            return f"{self.kind.value} (cloud)"
        if self.executable:
            return f"{self.kind.value} ({self.executable})"
        return self.kind.value


UNAVAILABLE = Backend(BackendKind.UNAVAILABLE)


def find_executable(
    kind: BackendKind,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
    search_dirs: Optional[Sequence[Path]] = None,
    is_executable: Callable[[Path], bool] = _is_executable,
) -> Optional[str]:
    names = EXECUTABLE_NAMES[kind]
    for name in names:
        found = which(name)
        if found:
            return found
    dirs = default_search_dirs() if search_dirs is None else search_dirs
    for d in dirs:
        for name in names:
            candidate = Path(d) / name
            if is_executable(candidate):
                return str(candidate)
    return None


def detect_backend(
    settings: Optional[Settings] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    search_dirs: Optional[Sequence[Path]] = None,
    is_executable: Callable[[Path], bool] = _is_executable,
) -> Backend:
    """Resolve the backend to use, once.

    A forced backend whose API key or executable is missing raises
    BackendUnavailableError. In auto mode a cloud key wins, then the first
    local engine found; if nothing resolves the UNAVAILABLE backend is returned.
    """
    s = settings or Settings()
    env = os.environ if env is None else env
    keys = {
        BackendKind.GROQ: s.groq_api_key or env.get(API_KEY_ENV[BackendKind.GROQ], ""),
        BackendKind.OPENAI: s.openai_api_key or env.get(API_KEY_ENV[BackendKind.OPENAI], ""),
    }

    def probe(kind: BackendKind) -> Optional[Backend]:
        exe = find_executable(
            kind, which=which, search_dirs=search_dirs, is_executable=is_executable
        )
        return Backend(kind, executable=exe) if exe else None

    requested = (s.backend or "auto").strip().lower()

    if requested in (BackendKind.GROQ.value, BackendKind.OPENAI.value):
        kind = BackendKind(requested)
        if not keys[kind]:
            raise BackendUnavailableError(
                f"{kind.value} backend selected but no API key configured "
                f"(set {API_KEY_ENV[kind]})"
            )
        return Backend(kind, api_key=keys[kind])

    if requested in (k.value for k in LOCAL_PROBE_ORDER):
        kind = BackendKind(requested)
        backend = probe(kind)
        if backend is None:
            raise BackendUnavailableError(
                f"{kind.value} backend selected but none of "
                f"{', '.join(EXECUTABLE_NAMES[kind])} was found"
            )
        return backend

    if requested == "local":
        for kind in LOCAL_PROBE_ORDER:
            backend = probe(kind)
            if backend is not None:
                return backend
        raise BackendUnavailableError("local backend selected but no local engine was found")

    if requested != "auto":
        raise BackendUnavailableError(f"Unknown backend '{s.backend}'")

    for kind in (BackendKind.GROQ, BackendKind.OPENAI):
        if keys[kind]:
            return Backend(kind, api_key=keys[kind])
    for kind in LOCAL_PROBE_ORDER:
        backend = probe(kind)
        if backend is not None:
            return backend
    return UNAVAILABLE


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_s: float = 1.0
    factor: float = 2.0

    @classmethod
    def single(cls) -> "RetryPolicy":
        return cls(attempts=1)

    def delay_before(self, attempt: int) -> float:
        """Backoff before `attempt` (1-based); the first attempt has none."""
        if attempt <= 1:
            return 0.0
        return self.base_delay_s * self.factor ** (attempt - 2)


@dataclass(frozen=True, slots=True)
class TranscriptionResult:
    text: Optional[str] = None
    error: Optional[TranscriptionError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None

    @classmethod
    def success(cls, text: str, attempts: int = 1) -> "TranscriptionResult":
        return cls(text=text, attempts=attempts)

    @classmethod
    def failure(cls, error: TranscriptionError, attempts: int = 0) -> "TranscriptionResult":
        return cls(error=error, attempts=attempts)


class TranscriptionEngine:
    """Turn one audio file into text through the detected backend."""

    def __init__(
        self,
        backend: Backend,
        *,
        model: str = "base",
        cloud_model: str = "",
        language: Optional[str] = None,
        translate: bool = False,
        model_path: Optional[str] = None,
        debug: Callable[[str], None] = noop_debug,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self._model = model
        self._cloud_model = cloud_model
        self._language = language or None
        self._translate = translate
        self._model_path = model_path or None
        self._debug = debug
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, *, debug: Callable[[str], None] = noop_debug
    ) -> "TranscriptionEngine":
        backend = detect_backend(settings)
        debug(f"backend resolved: {backend.describe()}")
        return cls(
            backend,
            model=settings.model,
            cloud_model=settings.cloud_model,
            language=settings.language,
            translate=settings.translate_to_english,
            model_path=settings.model_path,
            debug=debug,
        )

    def transcribe(
        self,
        audio_path: str | Path,
        *,
        retry: Optional[RetryPolicy] = None,
        timeout_s: float = 10.0,
        cancel: Optional[threading.Event] = None,
    ) -> TranscriptionResult:
        """Transcribe `audio_path`; never raises for transcription outcomes.

        Transient failures are retried per `retry` (single attempt by default);
        a set `cancel` event stops retrying and discards in-flight results.
        """
        if not self.backend.available:
            return TranscriptionResult.failure(
                TranscriptionError(
                    TranscriptionErrorKind.NO_BACKEND,
                    "No transcription backend available: set GROQ_API_KEY or "
                    "OPENAI_API_KEY, or install whisper-cpp",
                )
            )
        policy = retry or RetryPolicy.single()
        cancel_flag = cancel.is_set if cancel is not None else None
        src = Path(audio_path)

        last_error: Optional[TranscriptionError] = None
        attempt = 0
        for attempt in range(1, max(1, policy.attempts) + 1):
            if attempt > 1:
                delay = policy.delay_before(attempt)
                self._debug(f"retrying {src.name} in {delay:.1f}s (attempt {attempt}/{policy.attempts})")
                if self._backoff(delay, cancel):
                    last_error = TranscriptionError(
                        TranscriptionErrorKind.CANCELLED, "Transcription cancelled"
                    )
                    break
            try:
                text = self._transcribe_once(src, timeout_s=timeout_s, cancel_flag=cancel_flag)
            except TranscriptionError as exc:
                last_error = exc
                self._debug(f"attempt {attempt} for {src.name} failed: {exc}")
                if exc.kind is TranscriptionErrorKind.CANCELLED or not exc.transient:
                    break
                continue
            return TranscriptionResult.success(text, attempts=attempt)

        assert last_error is not None
        return TranscriptionResult.failure(last_error, attempts=attempt)

    def _backoff(self, delay: float, cancel: Optional[threading.Event]) -> bool:
        """Wait `delay` seconds; return True if cancelled meanwhile."""
        if cancel is None:
            self._sleep(delay)
            return False
        return cancel.wait(delay)

    def _transcribe_once(
        self,
        src: Path,
        *,
        timeout_s: float,
        cancel_flag: Callable[[], bool] | None,
    ) -> str:
        if not src.exists():
            raise TranscriptionError(
                TranscriptionErrorKind.INVALID_AUDIO, f"Audio file '{src}' not found."
            )
        try:
            with _as_wav(src) as wav_path:
                if self.backend.kind.is_cloud:
                    return self._cloud().transcribe(
                        wav_path, timeout_s=timeout_s, cancel_flag=cancel_flag
                    )
                return self._local().transcribe(wav_path, cancel_flag=cancel_flag)
        except TranscriptionError:
            raise
        except Exception as exc:  # noqa: BLE001
            kind = (
                TranscriptionErrorKind.API_ERROR
                if self.backend.kind.is_cloud
                else TranscriptionErrorKind.PROCESS_FAILED
            )
            raise TranscriptionError(kind, f"unexpected transcriber error: {exc}") from exc

    def _cloud(self) -> CloudTranscriber:
        provider = cloud.GROQ if self.backend.kind is BackendKind.GROQ else cloud.OPENAI
        return CloudTranscriber(
            provider=provider,
            api_key=self.backend.api_key or "",
            model=self._cloud_model,
            language=self._language,
            translate=self._translate,
            debug=self._debug,
        )

    def _local(self) -> LocalTranscriber:
        return LocalTranscriber(
            variant=self.backend.kind.value,
            executable=self.backend.executable or "",
            model=self._model,
            model_path=self._model_path,
            language=self._language,
            translate=self._translate,
            debug=self._debug,
        )


@contextmanager
def _as_wav(src: Path) -> Iterator[Path]:
    """Yield a WAV path for `src`, wrapping raw .pcm recordings in a temp WAV."""
    if src.suffix.lower() != ".pcm":
        yield src
        return
    fd, tmp = tempfile.mkstemp(prefix=f"{src.stem}_", suffix=".wav")
    os.close(fd)
    tmp_path = Path(tmp)
    try:
        try:
            pcm_to_wav(src, tmp_path)
        except (OSError, RuntimeError) as exc:
            raise TranscriptionError(
                TranscriptionErrorKind.INVALID_AUDIO, f"Cannot convert '{src}' to WAV: {exc}"
            ) from exc
        yield tmp_path
    finally:
        tmp_path.unlink(missing_ok=True)
