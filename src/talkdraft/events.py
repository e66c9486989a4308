"""Message channel between the capture pipeline and UI/lifecycle consumers.

Publishers never block: a full channel drops the event and counts the drop.
"""

from __future__ import annotations

import queue
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


@dataclass(frozen=True)
class AudioLevel:
    level: float


@dataclass(frozen=True)
class Spectrum:
    bands: tuple[float, ...]


@dataclass(frozen=True)
class ChunkReady:
    path: Path
    index: int
    frames: int


@dataclass(frozen=True)
class StateChanged:
    state: str
    text: Optional[str] = None
    error: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class RecordingDegraded:
    message: str
    dropped_frames: int


Event = Union[AudioLevel, Spectrum, ChunkReady, StateChanged, RecordingDegraded]


class EventChannel:
    def __init__(self, maxsize: int = 256) -> None:
        self._q: queue.Queue[Event] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: Event) -> None:
        try:
            self._q.put_nowait(event)
        except queue.Full:
            self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Return the next event, or None if nothing arrived within `timeout`."""
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Event]:
        events: list[Event] = []
        while True:
            try:
                events.append(self._q.get_nowait())
            except queue.Empty:
                return events
