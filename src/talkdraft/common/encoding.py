"""Canonical audio format used by every transcription backend.

Recordings are raw little-endian PCM16 mono at 16 kHz; chunks and anything
handed to a backend are WAV files with the same sample format.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import soundfile as sf


TARGET_SAMPLE_RATE = 16_000
TARGET_CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per PCM16 sample

_RAW_ARGS = dict(
    samplerate=TARGET_SAMPLE_RATE,
    channels=TARGET_CHANNELS,
    format="RAW",
    subtype="PCM_16",
    endian="LITTLE",
)


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype(np.int16)


def open_pcm_writer(path: str | Path) -> sf.SoundFile:
    """Open an append-only raw PCM16 writer for a recording."""
    return sf.SoundFile(str(path), mode="w", **_RAW_ARGS)


def pcm_frame_count(path: str | Path) -> int:
    return Path(path).stat().st_size // SAMPLE_WIDTH


def read_pcm_frames(path: str | Path, start: int = 0, stop: int | None = None) -> np.ndarray:
    """Read frames [start, stop) of a raw recording as int16."""
    total = pcm_frame_count(path)
    if stop is None or stop > total:
        stop = total
    if stop <= start:
        return np.zeros(0, dtype=np.int16)
    data, _sr = sf.read(str(path), start=start, stop=stop, dtype="int16", **_RAW_ARGS)
    return data


def write_wav(path: str | Path, samples: np.ndarray) -> Path:
    """Write int16 mono samples as a 16 kHz PCM16 WAV file."""
    out = Path(path)
    sf.write(str(out), np.asarray(samples, dtype=np.int16), TARGET_SAMPLE_RATE, subtype="PCM_16")
    return out


def pcm_to_wav(src: str | Path, dst: str | Path) -> Path:
    return write_wav(dst, read_pcm_frames(src))


def human_readable_bytes(n: int) -> str:
    MiB = 1024 * 1024
    KiB = 1024
    if n >= MiB:
        return f"{n / MiB:.1f} MiB"
    if n >= KiB:
        return f"{n / KiB:.0f} KiB"
    return f"{n} B"
