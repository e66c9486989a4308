import threading
import time
from pathlib import Path

from talkdraft.chunk_transcriber import ChunkTranscriber
from talkdraft.engine import TranscriptionResult
from talkdraft.errors import TranscriptionError, TranscriptionErrorKind


class FakeEngine:
    """Returns text<index> for chunk-<index>.wav after an optional delay."""

    def __init__(self, delays=None, fail=(), gate=None):
        self.delays = delays or {}
        self.fail = set(fail)
        self.gate = gate
        self.calls: list[Path] = []

    def transcribe(self, path, *, retry=None, timeout_s=10.0, cancel=None):
        path = Path(path)
        self.calls.append(path)
        index = int(path.stem.rsplit("-", 1)[1])
        if self.gate is not None:
            self.gate.wait(5.0)
        time.sleep(self.delays.get(index, 0.0))
        if index in self.fail:
            return TranscriptionResult.failure(
                TranscriptionError(TranscriptionErrorKind.NETWORK, "offline"), attempts=1
            )
        return TranscriptionResult.success(f"text{index}")


def _chunk(tmp_path: Path, index: int) -> Path:
    p = tmp_path / f"chunk-{index}.wav"
    p.write_bytes(b"RIFF")
    return p


def test_draft_is_assembled_in_index_order(tmp_path: Path) -> None:
    engine = FakeEngine(delays={0: 0.03, 1: 0.01, 2: 0.02})
    ct = ChunkTranscriber(engine, tmp_path / "draft.txt")
    chunks = [_chunk(tmp_path, i) for i in range(3)]
    for i, c in enumerate(chunks):
        assert ct.enqueue(c, i)

    assert ct.wait_idle(5.0)
    assert ct.get_draft_text() == "text0 text1 text2"
    assert (tmp_path / "draft.txt").read_text() == "text0 text1 text2"
    # Chunk files are consumed
    assert not any(c.exists() for c in chunks)
    ct.stop()
    assert ct.join(2.0)


def test_failed_chunk_leaves_gap(tmp_path: Path) -> None:
    engine = FakeEngine(fail={1})
    ct = ChunkTranscriber(engine, tmp_path / "draft.txt")
    chunks = [_chunk(tmp_path, i) for i in range(3)]
    for i, c in enumerate(chunks):
        ct.enqueue(c, i)

    assert ct.wait_idle(5.0)
    assert ct.get_draft_text() == "text0 text2"
    assert ct.completed == 2
    assert ct.failed == 1
    assert not chunks[1].exists()
    ct.stop()


def test_duplicate_or_stale_index_is_ignored(tmp_path: Path) -> None:
    engine = FakeEngine()
    ct = ChunkTranscriber(engine, tmp_path / "draft.txt")
    assert ct.enqueue(_chunk(tmp_path, 0), 0)
    assert ct.enqueue(_chunk(tmp_path, 2), 2)
    assert not ct.enqueue(tmp_path / "chunk-2.wav", 2)
    stale = _chunk(tmp_path, 1)
    assert not ct.enqueue(stale, 1)
    assert not stale.exists()

    assert ct.wait_idle(5.0)
    assert [p.name for p in engine.calls] == ["chunk-0.wav", "chunk-2.wav"]
    assert ct.get_draft_text() == "text0 text2"
    ct.stop()


def test_stop_discards_pending_but_finishes_in_flight(tmp_path: Path) -> None:
    gate = threading.Event()
    engine = FakeEngine(gate=gate)
    ct = ChunkTranscriber(engine, tmp_path / "draft.txt")
    chunks = [_chunk(tmp_path, i) for i in range(3)]
    for i, c in enumerate(chunks):
        ct.enqueue(c, i)

    # Wait for the worker to pick up chunk 0
    deadline = time.time() + 5.0
    while not engine.calls and time.time() < deadline:
        time.sleep(0.01)

    assert ct.stop() == 2
    assert not chunks[1].exists()
    assert not chunks[2].exists()

    gate.set()
    assert ct.join(5.0)
    assert ct.get_draft_text() == "text0"
    assert len(engine.calls) == 1


def test_enqueue_after_stop_is_refused(tmp_path: Path) -> None:
    ct = ChunkTranscriber(FakeEngine(), tmp_path / "draft.txt")
    ct.stop()
    late = _chunk(tmp_path, 0)
    assert not ct.enqueue(late, 0)
    assert not late.exists()
    assert ct.join(2.0)


def test_cancel_in_flight_discards_result(tmp_path: Path) -> None:
    gate = threading.Event()
    engine = FakeEngine(gate=gate)
    ct = ChunkTranscriber(engine, tmp_path / "draft.txt")
    ct.enqueue(_chunk(tmp_path, 0), 0)
    deadline = time.time() + 5.0
    while not engine.calls and time.time() < deadline:
        time.sleep(0.01)

    ct.stop(cancel_in_flight=True)
    gate.set()
    assert ct.join(5.0)
    assert ct.get_draft_text() is None


def test_empty_draft_reads_as_none(tmp_path: Path) -> None:
    draft = tmp_path / "draft.txt"
    draft.write_text("")
    ct = ChunkTranscriber(FakeEngine(), draft)
    assert ct.get_draft_text() is None
    ct.stop()


def test_draft_is_stable_without_new_completions(tmp_path: Path) -> None:
    ct = ChunkTranscriber(FakeEngine(), tmp_path / "draft.txt")
    ct.enqueue(_chunk(tmp_path, 0), 0)
    ct.enqueue(_chunk(tmp_path, 1), 1)
    assert ct.wait_idle(5.0)

    on_disk = (tmp_path / "draft.txt").read_bytes()
    first = ct.get_draft_text()
    second = ct.get_draft_text()
    assert first == second == "text0 text1"
    assert (tmp_path / "draft.txt").read_bytes() == on_disk
    ct.stop()
