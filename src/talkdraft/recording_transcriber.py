"""Utilities for recovering recordings preserved on disk."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .common.fs import StorageLayout, unique_path
from .engine import RetryPolicy, TranscriptionEngine


SUPPORTED_EXTENSIONS = {".pcm", ".wav", ".flac", ".ogg", ".mp3", ".m4a"}


def list_recordings(directory: Path) -> list[Path]:
    """Return supported audio files newest-first, preferring the 'recordings' subfolder."""
    directory = Path(directory)
    search_dirs: list[Path] = []
    recordings_dir = directory / "recordings"
    if recordings_dir.exists():
        search_dirs.append(recordings_dir)
    if directory.exists():
        search_dirs.append(directory)
    seen: set[Path] = set()
    recordings: list[Path] = []
    for folder in search_dirs:
        for p in folder.iterdir():
            if (
                p.is_file()
                and p.suffix.lower() in SUPPORTED_EXTENSIONS
                and p not in seen
            ):
                recordings.append(p)
                seen.add(p)
    return sorted(recordings, key=lambda p: p.stat().st_mtime, reverse=True)


@dataclass(slots=True)
class RecordingTranscriptionResult:
    source: Path
    transcript: str
    output_path: Path | None
    attempts: int = 1


def layout_for(audio_path: Path) -> StorageLayout:
    """Guess the storage layout a recording belongs to."""
    parent = Path(audio_path).parent
    if parent.name.lower() == "recordings":
        return StorageLayout(parent.parent)
    return StorageLayout(parent)


def transcribe_recording(
    audio_path: Path,
    engine: TranscriptionEngine,
    layout: StorageLayout | None = None,
    *,
    retry: RetryPolicy | None = None,
    timeout_s: float = 60.0,
    write_text: bool = True,
    overwrite: bool = False,
) -> RecordingTranscriptionResult:
    """Transcribe `audio_path` and optionally persist it under transcriptions/.

    Raises TranscriptionError when every attempt fails.
    """
    audio_path = Path(audio_path)
    layout = layout or layout_for(audio_path)
    result = engine.transcribe(audio_path, retry=retry or RetryPolicy(), timeout_s=timeout_s)
    if not result.ok:
        assert result.error is not None
        raise result.error
    text = result.text or ""
    output: Path | None = None
    if write_text:
        layout.transcriptions_dir.mkdir(parents=True, exist_ok=True)
        output = layout.transcriptions_dir / f"{audio_path.stem}.txt"
        if output.exists() and not overwrite:
            output = unique_path(output)
        output.write_text(text, encoding="utf-8")
    return RecordingTranscriptionResult(
        source=audio_path,
        transcript=text,
        output_path=output,
        attempts=result.attempts,
    )


def read_draft(audio_path: Path, layout: StorageLayout | None = None) -> Optional[str]:
    """Return the preserved draft for a recording, if one exists and is non-empty."""
    audio_path = Path(audio_path)
    layout = layout or layout_for(audio_path)
    try:
        text = layout.draft_path(audio_path.stem).read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return text or None
