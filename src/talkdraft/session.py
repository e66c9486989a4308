"""One recording from start to delivered transcript.

Idle -> Recording -> Processing -> Complete | Failed | Cancelled

While recording, chunks are drafted in the background. On stop the whole
recording is transcribed with retries; if that fails the draft is delivered
instead, flagged as degraded.
"""

from __future__ import annotations

import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .chunk_transcriber import ChunkTranscriber
from .common.debug import make_debug, noop_debug, warn
from .common.fs import StorageLayout
from .common.settings import Settings
from .engine import RetryPolicy, TranscriptionEngine, TranscriptionResult
from .errors import CaptureError, SessionError, TranscriptionError, TranscriptionErrorKind
from .events import EventChannel, StateChanged
from .recorder import AudioCapture, CaptureConfig


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETE, SessionState.FAILED, SessionState.CANCELLED)


@dataclass(frozen=True)
class SessionOutcome:
    state: SessionState
    text: Optional[str] = None
    degraded: bool = False  # text came from the draft
    error: Optional[TranscriptionError] = None
    recording_path: Optional[Path] = None
    draft_path: Optional[Path] = None
    transcript_path: Optional[Path] = None
    degraded_recording: bool = False

    @property
    def delivered(self) -> bool:
        return self.text is not None and self.state is not SessionState.CANCELLED


@dataclass
class SessionConfig:
    device_name: str = ""
    chunk_interval_s: float = 15.0
    min_chunk_s: float = 0.5
    chunk_timeout_s: float = 10.0
    final_timeout_s: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    chunk_dir: Optional[Path] = None
    save_history: bool = True
    # Upper bound on waiting for queued chunks before reading the draft
    drain_timeout_s: float = 30.0

    @classmethod
    def from_settings(cls, s: Settings) -> "SessionConfig":
        return cls(
            device_name=s.input_device,
            chunk_interval_s=s.chunk_interval_s,
            min_chunk_s=s.min_chunk_s,
            chunk_timeout_s=s.chunk_timeout_s,
            final_timeout_s=s.final_timeout_s,
            retry=RetryPolicy(attempts=max(1, s.retry_attempts), base_delay_s=s.retry_base_delay_s),
            save_history=s.save_history,
        )


CaptureFactory = Callable[..., Any]


class RecordingSession:
    def __init__(
        self,
        engine: TranscriptionEngine,
        layout: StorageLayout,
        *,
        config: Optional[SessionConfig] = None,
        events: Optional[EventChannel] = None,
        capture_factory: CaptureFactory = AudioCapture,
        debug: Callable[[str], None] = noop_debug,
    ) -> None:
        self._engine = engine
        self._layout = layout
        self._cfg = config or SessionConfig()
        self.events = events or EventChannel()
        self._capture_factory = capture_factory
        self._debug = debug

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._outcome: Optional[SessionOutcome] = None
        self._worker: Optional[threading.Thread] = None
        self._capture: Optional[Any] = None
        self._chunks: Optional[ChunkTranscriber] = None

        self.timestamp: Optional[str] = None
        self.recording_path: Optional[Path] = None
        self.draft_path: Optional[Path] = None
        self.degraded_recording = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        events: Optional[EventChannel] = None,
        debug: Optional[Callable[[str], None]] = None,
    ) -> "RecordingSession":
        debug = debug or make_debug("session")
        return cls(
            TranscriptionEngine.from_settings(settings, debug=debug),
            StorageLayout.at(settings.data_dir),
            config=SessionConfig.from_settings(settings),
            events=events,
            debug=debug,
        )

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    # ---------- Lifecycle ----------
    def start(self) -> None:
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise SessionError(f"cannot start a session that is {self._state.value}")
        self._layout.ensure()
        ts = self._layout.new_session_timestamp()
        self.timestamp = ts
        self.recording_path = self._layout.recording_path(ts)
        self.draft_path = self._layout.draft_path(ts)
        self.draft_path.write_text("", encoding="utf-8")

        self._chunks = ChunkTranscriber(
            self._engine, self.draft_path, timeout_s=self._cfg.chunk_timeout_s, debug=self._debug
        )
        cap_cfg = CaptureConfig(
            recording_path=self.recording_path,
            chunk_dir=self._cfg.chunk_dir or Path(tempfile.gettempdir()),
            chunk_prefix=f"chunk-{ts}",
            device_name=self._cfg.device_name,
            chunk_interval_s=self._cfg.chunk_interval_s,
            min_chunk_s=self._cfg.min_chunk_s,
        )
        self._capture = self._capture_factory(cap_cfg, events=self.events, debug=self._debug)
        try:
            self._capture.start(self._chunks.enqueue)
        except CaptureError as exc:
            self._chunks.stop()
            self._chunks.join(timeout=1.0)
            self._finish_without_transcript(SessionState.FAILED, str(exc))
            raise
        self._set_state(SessionState.RECORDING)
        self._debug(f"session {ts} recording -> {self.recording_path}")

    def stop(self) -> None:
        """Finalize the recording and start the final transcription in the background."""
        with self._lock:
            if self._state is not SessionState.RECORDING:
                raise SessionError(f"cannot stop a session that is {self._state.value}")
        assert self._capture is not None
        try:
            recording = Path(self._capture.stop())
        except Exception as exc:  # noqa: BLE001
            warn("TalkDraft", f"capture did not stop cleanly: {exc}")
            assert self.recording_path is not None
            recording = self.recording_path
        self.degraded_recording = bool(getattr(self._capture, "degraded", False))
        if self.degraded_recording:
            warn(
                "TalkDraft",
                f"recording is incomplete: {getattr(self._capture, 'dropped_frames', 0)} "
                "frames could not be written",
            )
        self._set_state(SessionState.PROCESSING)
        self._worker = threading.Thread(
            target=self._finish, args=(recording,), name="TalkDraftFinalTranscription", daemon=True
        )
        self._worker.start()

    def cancel(self) -> None:
        with self._lock:
            if self._state is not SessionState.PROCESSING:
                raise SessionError(f"cannot cancel a session that is {self._state.value}")
            self._state = SessionState.CANCELLED
        self._cancel.set()
        self.events.publish(StateChanged(SessionState.CANCELLED.value))
        self._debug("cancel requested")

    def wait(self, timeout: Optional[float] = None) -> Optional[SessionOutcome]:
        """Return the outcome once terminal, or None if `timeout` expires first."""
        if self._worker is None and not self._done.is_set():
            raise SessionError("session has not been stopped")
        if not self._done.wait(timeout):
            return None
        return self._outcome

    # ---------- Final transcription ----------
    def _finish(self, recording: Path) -> None:
        outcome: Optional[SessionOutcome] = None
        try:
            result = self._engine.transcribe(
                recording,
                retry=self._cfg.retry,
                timeout_s=self._cfg.final_timeout_s,
                cancel=self._cancel,
            )
            if not result.ok and not self._cancel.is_set():
                assert self._chunks is not None
                if not self._chunks.wait_idle(self._cfg.drain_timeout_s):
                    self._debug("chunk queue still busy; reading partial draft")
            with self._lock:
                if self._state is SessionState.PROCESSING:
                    self._state = SessionState.COMPLETE if result.ok else SessionState.FAILED
                claimed = self._state
            if claimed is SessionState.CANCELLED:
                outcome = self._on_cancelled()
            elif claimed is SessionState.COMPLETE:
                outcome = self._on_complete(result)
            else:
                outcome = self._on_failed(result)
        except Exception as exc:  # noqa: BLE001
            warn("TalkDraft", f"final transcription crashed: {exc}")
            with self._lock:
                self._state = SessionState.FAILED
            outcome = self._outcome_for(
                SessionState.FAILED,
                error=TranscriptionError(TranscriptionErrorKind.PROCESS_FAILED, str(exc)),
            )
            self.events.publish(StateChanged(SessionState.FAILED.value, error=str(exc)))
        finally:
            self._outcome = outcome
            self._done.set()

    def _on_complete(self, result: TranscriptionResult) -> SessionOutcome:
        assert self._chunks is not None and self.draft_path is not None
        self._chunks.stop(cancel_in_flight=True)
        self._chunks.join(timeout=self._cfg.chunk_timeout_s + 1.0)
        text = result.text or ""
        transcript = self._write_transcript(text)
        # The full transcript supersedes the draft
        self.draft_path.unlink(missing_ok=True)
        if not self._cfg.save_history and self.recording_path is not None:
            self.recording_path.unlink(missing_ok=True)
        self._debug(f"complete after {result.attempts} attempt(s), {len(text)} chars")
        self.events.publish(StateChanged(SessionState.COMPLETE.value, text=text))
        return self._outcome_for(
            SessionState.COMPLETE,
            text=text,
            transcript_path=transcript,
            draft_path=None,
            recording_path=self.recording_path if self._cfg.save_history else None,
        )

    def _on_failed(self, result: TranscriptionResult) -> SessionOutcome:
        assert self._chunks is not None
        self._chunks.stop()
        self._chunks.join(timeout=self._cfg.chunk_timeout_s + 1.0)
        error = result.error
        draft = self._chunks.get_draft_text()
        warn("TalkDraft", f"transcription failed after {result.attempts} attempt(s): {error}")
        if draft:
            transcript = self._write_transcript(draft)
            self.events.publish(
                StateChanged(SessionState.FAILED.value, text=draft, error=str(error), degraded=True)
            )
            return self._outcome_for(
                SessionState.FAILED,
                text=draft,
                degraded=True,
                error=error,
                transcript_path=transcript,
            )
        self.events.publish(StateChanged(SessionState.FAILED.value, error=str(error)))
        return self._outcome_for(SessionState.FAILED, error=error)

    def _on_cancelled(self) -> SessionOutcome:
        assert self._chunks is not None
        self._chunks.stop(cancel_in_flight=True)
        self._chunks.join(timeout=self._cfg.chunk_timeout_s + 1.0)
        self._debug(f"cancelled; kept {self.recording_path} and {self.draft_path}")
        return self._outcome_for(
            SessionState.CANCELLED,
            error=TranscriptionError(TranscriptionErrorKind.CANCELLED, "Transcription cancelled"),
        )

    # ---------- Helpers ----------
    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            self._state = state
        self.events.publish(StateChanged(state.value))

    def _finish_without_transcript(self, state: SessionState, error: str) -> None:
        with self._lock:
            self._state = state
        self._outcome = self._outcome_for(state)
        self._done.set()
        self.events.publish(StateChanged(state.value, error=error))

    def _outcome_for(self, state: SessionState, **fields: Any) -> SessionOutcome:
        values: dict[str, Any] = dict(
            recording_path=self.recording_path,
            draft_path=self.draft_path,
            degraded_recording=self.degraded_recording,
        )
        values.update(fields)
        return SessionOutcome(state=state, **values)

    def _write_transcript(self, text: str) -> Optional[Path]:
        if self.timestamp is None:
            return None
        path = self._layout.transcript_path(self.timestamp)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            warn("TalkDraft", f"could not save transcript to {path}: {exc}")
            return None
        return path
