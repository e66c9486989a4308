"""Background drafting of an in-progress recording.

Chunks are transcribed one at a time on a single worker thread. Each
successful fragment is stored under its sequence index and the draft file is
rewritten in index order, so the file on disk is always a readable draft.
"""

from __future__ import annotations

import os
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Optional

from .common.debug import noop_debug
from .engine import TranscriptionEngine


class ChunkTranscriber:
    def __init__(
        self,
        engine: TranscriptionEngine,
        draft_path: str | Path,
        *,
        timeout_s: float = 10.0,
        debug: Callable[[str], None] = noop_debug,
    ) -> None:
        self._engine = engine
        self.draft_path = Path(draft_path)
        self._timeout_s = timeout_s
        self._debug = debug

        self._cond = threading.Condition()
        self._pending: deque[tuple[Path, int]] = deque()
        self._fragments: dict[int, str] = {}
        self._last_index = -1
        self._in_flight: Optional[Path] = None
        self._busy = False
        self._closed = False
        self._cancel = threading.Event()

        self.completed = 0
        self.failed = 0

        self._thread = threading.Thread(
            target=self._run, name="TalkDraftChunkWorker", daemon=True
        )
        self._thread.start()

    # ---------- Public API ----------
    def enqueue(self, chunk_path: str | Path, index: int) -> bool:
        """Queue a chunk; returns False if it was refused."""
        path = Path(chunk_path)
        with self._cond:
            if self._closed:
                self._debug(f"chunk {index} refused after stop; deleting {path.name}")
                path.unlink(missing_ok=True)
                return False
            if index <= self._last_index:
                self._debug(f"chunk {index} ignored (last queued {self._last_index})")
                queued = {p for p, _i in self._pending}
                if path not in queued and path != self._in_flight:
                    path.unlink(missing_ok=True)
                return False
            self._last_index = index
            self._pending.append((path, index))
            self._cond.notify_all()
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued or in flight; False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._pending and not self._busy, timeout)

    def stop(self, *, cancel_in_flight: bool = False) -> int:
        """Discard pending chunks and end the worker once it is free.

        Returns the number of discarded chunks. An in-flight transcription is
        allowed to finish unless `cancel_in_flight` is set, in which case its
        result is discarded.
        """
        with self._cond:
            self._closed = True
            dropped = list(self._pending)
            self._pending.clear()
            self._cond.notify_all()
        if cancel_in_flight:
            self._cancel.set()
        for path, _index in dropped:
            path.unlink(missing_ok=True)
        if dropped:
            self._debug(f"discarded {len(dropped)} pending chunk(s)")
        return len(dropped)

    def join(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def get_draft_text(self) -> Optional[str]:
        try:
            text = self.draft_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return text or None

    # ---------- Worker ----------
    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if not self._pending:
                    return
                path, index = self._pending.popleft()
                self._busy = True
                self._in_flight = path
            try:
                self._process(path, index)
            finally:
                with self._cond:
                    self._busy = False
                    self._in_flight = None
                    self._cond.notify_all()

    def _process(self, path: Path, index: int) -> None:
        try:
            result = self._engine.transcribe(path, timeout_s=self._timeout_s, cancel=self._cancel)
            if self._cancel.is_set():
                self._debug(f"chunk {index} result discarded (cancelled)")
            elif result.ok:
                self._store(index, result.text or "")
                self.completed += 1
            else:
                # A failed chunk leaves a gap in the draft
                self.failed += 1
                self._debug(f"chunk {index} failed: {result.error}")
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            self._debug(f"chunk {index} crashed: {exc}")
        finally:
            path.unlink(missing_ok=True)

    def _store(self, index: int, text: str) -> None:
        with self._cond:
            self._fragments[index] = text
            ordered = [self._fragments[i] for i in sorted(self._fragments)]
        draft = " ".join(t for t in ordered if t)
        tmp = self.draft_path.with_name(self.draft_path.name + ".tmp")
        try:
            self.draft_path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(draft, encoding="utf-8")
            os.replace(tmp, self.draft_path)
        except OSError as exc:
            self._debug(f"draft write failed: {exc}")
            tmp.unlink(missing_ok=True)
            return
        self._debug(f"draft updated with chunk {index} ({len(draft)} chars)")
