"""Filesystem helpers for TalkDraft.

Persisted layout under the data directory:
- recordings/<timestamp>.pcm      raw PCM16 mono 16 kHz, one per session
- drafts/draft-<timestamp>.txt    live draft assembled from chunk transcripts
- transcriptions/<timestamp>.txt  delivered transcript
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "talkdraft"


def unique_path(path: str | Path) -> Path:
    """Return a unique path by appending " (n)" before the suffix if needed.

    Examples:
    - "/tmp/take.pcm" -> if exists, returns "/tmp/take (1).pcm", then (2), etc.
    - "/tmp/take" (no suffix) -> "/tmp/take (1)"
    """
    p = Path(path)
    if not p.exists():
        return p

    stem = p.stem
    suffix = p.suffix
    parent = p.parent

    n = 1
    while True:
        candidate = parent / f"{stem} ({n}){suffix}"
        if not candidate.exists():
            return candidate
        n += 1


def session_timestamp(ts: Optional[float] = None) -> str:
    """Return a filesystem-safe session timestamp: YYYY-MM-DD-HH-MM-SS."""
    if ts is None:
        ts = time.time()
    return time.strftime("%Y-%m-%d-%H-%M-%S", time.localtime(ts))


@dataclass(frozen=True)
class StorageLayout:
    data_dir: Path

    @classmethod
    def at(cls, data_dir: str | Path | None = None) -> "StorageLayout":
        if not data_dir:
            return cls(default_data_dir())
        return cls(Path(data_dir).expanduser())

    @property
    def recordings_dir(self) -> Path:
        return self.data_dir / "recordings"

    @property
    def transcriptions_dir(self) -> Path:
        return self.data_dir / "transcriptions"

    @property
    def drafts_dir(self) -> Path:
        return self.data_dir / "drafts"

    def ensure(self) -> None:
        for d in (self.recordings_dir, self.transcriptions_dir, self.drafts_dir):
            d.mkdir(parents=True, exist_ok=True)

    def recording_path(self, timestamp: str) -> Path:
        return self.recordings_dir / f"{timestamp}.pcm"

    def draft_path(self, timestamp: str) -> Path:
        return self.drafts_dir / f"draft-{timestamp}.txt"

    def transcript_path(self, timestamp: str) -> Path:
        return self.transcriptions_dir / f"{timestamp}.txt"

    def new_session_timestamp(self, ts: Optional[float] = None) -> str:
        """Return a timestamp whose recording path is not taken yet."""
        base = session_timestamp(ts)
        return unique_path(self.recording_path(base)).stem
