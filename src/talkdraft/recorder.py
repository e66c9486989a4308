"""Microphone capture engine for TalkDraft.

Owns the sounddevice input stream. Every hardware buffer is analyzed for the
live level/spectrum feedback, resampled to 16 kHz mono and appended to the
session's raw PCM16 recording. A background timer slices the recording into
chunk files for draft transcription.
"""

from __future__ import annotations

import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np

from .analysis import BAND_COUNT, SignalAnalyzer
from .common.debug import noop_debug, warn
from .common.encoding import (
    TARGET_SAMPLE_RATE,
    float_to_pcm16,
    human_readable_bytes,
    open_pcm_writer,
    read_pcm_frames,
    write_wav,
)
from .errors import CaptureError, CaptureErrorKind
from .events import AudioLevel, ChunkReady, EventChannel, RecordingDegraded, Spectrum
from .resample import AudioResampler, to_mono

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore


ChunkCallback = Callable[[Path, int], None]


@dataclass
class CaptureConfig:
    recording_path: Path
    chunk_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    chunk_prefix: str = "chunk"
    device_name: str = ""  # empty: system default input
    blocksize: int = 512
    chunk_interval_s: float = 15.0
    min_chunk_s: float = 0.5

    def __post_init__(self) -> None:
        self.recording_path = Path(self.recording_path)
        self.chunk_dir = Path(self.chunk_dir)
        if self.chunk_interval_s <= 0:
            raise ValueError("chunk_interval_s must be positive")

    @property
    def frames_per_interval(self) -> int:
        return int(TARGET_SAMPLE_RATE * self.chunk_interval_s)

    @property
    def min_chunk_frames(self) -> int:
        return int(TARGET_SAMPLE_RATE * self.min_chunk_s)


def _classify(exc: Exception) -> CaptureError:
    msg = str(exc)
    low = msg.lower()
    if "permission" in low or "not permitted" in low or "authoriz" in low or "access denied" in low:
        return CaptureError(CaptureErrorKind.PERMISSION_DENIED, f"Microphone access denied: {msg}")
    return CaptureError(CaptureErrorKind.DEVICE_UNAVAILABLE, f"No usable input device: {msg}")


def _resolve_input_device(name: str) -> tuple[Optional[int], dict]:
    try:
        if name:
            devs = sd.query_devices()
            for i, d in enumerate(devs):
                if d.get("name") == name and d.get("max_input_channels", 0) > 0:
                    return i, d
            raise CaptureError(
                CaptureErrorKind.DEVICE_UNAVAILABLE,
                f"Input device named '{name}' not found or has no input channels. "
                f"Available input devices: {[d['name'] for d in devs if d.get('max_input_channels', 0) > 0]}",
            )
        info = sd.query_devices(kind="input")
    except CaptureError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise _classify(exc) from exc
    if int(info.get("max_input_channels", 0) or 0) <= 0:
        raise CaptureError(CaptureErrorKind.DEVICE_UNAVAILABLE, "Default device has no input channels")
    return None, info


def list_input_devices() -> list[str]:
    """Return names of input-capable devices."""
    if sd is None:
        return []
    devs = sd.query_devices()
    return [d["name"] for d in devs if d.get("max_input_channels", 0) > 0]


class AudioCapture:
    """Capture one recording session from the microphone.

    Usage:
      cap = AudioCapture(CaptureConfig(recording_path=...), events=channel)
      cap.start(on_chunk_ready)
      ...
      recording = cap.stop()
    """

    def __init__(
        self,
        cfg: CaptureConfig,
        events: Optional[EventChannel] = None,
        debug: Callable[[str], None] = noop_debug,
        analyzer: Optional[SignalAnalyzer] = None,
    ) -> None:
        self._cfg = cfg
        self._events = events or EventChannel()
        self._debug = debug
        self._analyzer = analyzer or SignalAnalyzer()
        self._stream: Optional[Any] = None
        self._writer: Optional[Any] = None
        self._resampler: Optional[AudioResampler] = None
        self._on_chunk_ready: Optional[ChunkCallback] = None
        self._running = False
        self._closed = False

        # Guards _frames_written between the audio thread and the chunk extractor
        self._lock = threading.Lock()
        self._frames_written = 0
        self._extract_lock = threading.Lock()
        self._last_chunk_frame = 0
        self._last_index = -1
        self._chunk_count = 0

        self._stop_timer = threading.Event()
        self._timer: Optional[threading.Thread] = None

        self.dropped_frames = 0
        self.degraded = False
        self.sample_rate: Optional[int] = None
        self.channels: Optional[int] = None

    # ---------- Public API ----------
    @property
    def recording_path(self) -> Path:
        return self._cfg.recording_path

    @property
    def frames_written(self) -> int:
        with self._lock:
            return self._frames_written

    @property
    def duration_s(self) -> float:
        return self.frames_written / TARGET_SAMPLE_RATE

    def is_running(self) -> bool:
        return self._stream is not None

    def start(self, on_chunk_ready: Optional[ChunkCallback] = None) -> None:
        if self._stream is not None or self._closed:
            raise RuntimeError("Capture already started")
        if sd is None:
            raise CaptureError(
                CaptureErrorKind.DEVICE_UNAVAILABLE, "sounddevice (PortAudio) is not available"
            )
        device_id, info = _resolve_input_device(self._cfg.device_name)
        self.sample_rate = int(info.get("default_samplerate") or TARGET_SAMPLE_RATE)
        self.channels = int(info["max_input_channels"])
        self._on_chunk_ready = on_chunk_ready
        self._resampler = AudioResampler(self.sample_rate)

        self._cfg.recording_path.parent.mkdir(parents=True, exist_ok=True)
        self._cfg.chunk_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._writer = open_pcm_writer(self._cfg.recording_path)
        except Exception as exc:  # noqa: BLE001
            raise CaptureError(
                CaptureErrorKind.STREAM_FAILED,
                f"Cannot create recording file {self._cfg.recording_path}: {exc}",
            ) from exc

        self._running = True
        try:
            self._stream = sd.InputStream(
                device=device_id,
                channels=self.channels,
                samplerate=self.sample_rate,
                blocksize=self._cfg.blocksize,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:  # noqa: BLE001
            self._running = False
            self._stream = None
            self._writer.close()
            self._writer = None
            raise _classify(exc) from exc

        self._stop_timer.clear()
        self._timer = threading.Thread(
            target=self._chunk_loop, name="TalkDraftChunkTimer", daemon=True
        )
        self._timer.start()
        self._debug(
            f"capture started sr={self.sample_rate} ch={self.channels} -> {self._cfg.recording_path}"
        )

    def stop(self) -> Path:
        """Stop capture, flush the tail chunk and close the recording."""
        if self._stream is None:
            return self._cfg.recording_path
        self._running = False
        stream, self._stream = self._stream, None
        for name, step in (("stop", stream.stop), ("close", stream.close)):
            try:
                step()
            except Exception as exc:  # noqa: BLE001
                warn("TalkDraft", f"audio stream {name} failed: {exc}")

        try:
            self._stop_timer.set()
            if self._timer is not None:
                self._timer.join(timeout=5.0)
                self._timer = None

            # Tail audio since the last timer tick
            self._extract_chunk()
        finally:
            if self._writer is not None:
                self._writer.close()
                self._writer = None
            self._closed = True
        size = self.frames_written * 2
        self._debug(
            f"capture stopped {self.duration_s:.2f}s ({human_readable_bytes(size)}) "
            f"chunks={self._chunk_count} dropped={self.dropped_frames}"
        )
        return self._cfg.recording_path

    # ---------- Internals ----------
    def _callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:  # type: ignore[override]
        if status:
            self._debug(f"audio status: {status}")
        if not self._running:
            return
        mono = to_mono(indata)
        self._publish_analysis(mono)
        self._append(mono)

    def _publish_analysis(self, mono: np.ndarray) -> None:
        try:
            level = self._analyzer.rms(mono)
            bands = tuple(self._analyzer.spectrum(mono))
        except Exception as exc:  # noqa: BLE001
            self._debug(f"analysis failed: {exc}")
            level, bands = 0.0, (0.0,) * BAND_COUNT
        self._events.publish(AudioLevel(level))
        self._events.publish(Spectrum(bands))

    def _append(self, mono: np.ndarray) -> None:
        writer = self._writer
        if writer is None or self._resampler is None:
            return
        pcm = float_to_pcm16(self._resampler.process(mono))
        if pcm.size == 0:
            return
        try:
            writer.write(pcm)
        except Exception as exc:  # noqa: BLE001
            self.dropped_frames += int(pcm.size)
            if not self.degraded:
                self.degraded = True
                self._events.publish(
                    RecordingDegraded(f"recording append failed: {exc}", self.dropped_frames)
                )
            self._debug(f"append failed, dropped {pcm.size} frames: {exc}")
            return
        with self._lock:
            self._frames_written += int(pcm.size)

    def _chunk_loop(self) -> None:
        while not self._stop_timer.wait(self._cfg.chunk_interval_s):
            self._extract_chunk()

    def _extract_chunk(self) -> Optional[Path]:
        with self._extract_lock:
            current = self.frames_written
            start = self._last_chunk_frame
            frames = current - start
            if frames < self._cfg.min_chunk_frames:
                if frames > 0:
                    self._debug(f"skipping {frames} frame tail (below minimum chunk)")
                return None

            index = start // self._cfg.frames_per_interval
            if index <= self._last_index:
                index = self._last_index + 1
            path = self._cfg.chunk_dir / f"{self._cfg.chunk_prefix}-{index}.wav"
            try:
                write_wav(path, read_pcm_frames(self._cfg.recording_path, start, current))
            except Exception as exc:  # noqa: BLE001
                self._debug(f"chunk {index} extraction failed: {exc}")
                path.unlink(missing_ok=True)
                return None

            self._last_chunk_frame = current
            self._last_index = index
            self._chunk_count += 1
            self._debug(f"chunk {index} ready frames=[{start}, {current}) -> {path.name}")

        self._events.publish(ChunkReady(path, index, frames))
        if self._on_chunk_ready is not None:
            try:
                self._on_chunk_ready(path, index)
            except Exception as exc:  # noqa: BLE001
                self._debug(f"chunk consumer failed for {path.name}: {exc}")
        return path
