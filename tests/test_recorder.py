from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import soundfile as sf

from talkdraft.common.encoding import pcm_frame_count
from talkdraft.errors import CaptureError, CaptureErrorKind
from talkdraft.events import AudioLevel, ChunkReady, EventChannel, RecordingDegraded, Spectrum
from talkdraft.recorder import AudioCapture, CaptureConfig, list_input_devices

SR = 48_000
BLOCK = 4_800  # 0.1 s at 48 kHz


def _mock_sd(samplerate: float = SR, channels: int = 2) -> MagicMock:
    sd = MagicMock()
    sd.query_devices.return_value = {
        "name": "Test Mic",
        "max_input_channels": channels,
        "default_samplerate": samplerate,
    }
    return sd


def _block(seconds_offset: float = 0.0) -> np.ndarray:
    t = seconds_offset + np.arange(BLOCK) / SR
    mono = (0.3 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
    return np.stack([mono, mono], axis=1)


def _capture(tmp_path: Path, **cfg) -> tuple[AudioCapture, EventChannel, list]:
    events = EventChannel(maxsize=10_000)
    chunks: list = []
    cap = AudioCapture(
        CaptureConfig(
            recording_path=tmp_path / "recordings" / "take.pcm",
            chunk_dir=tmp_path / "chunks",
            chunk_prefix="chunk-take",
            **cfg,
        ),
        events=events,
    )
    return cap, events, chunks


def _feed(cap: AudioCapture, blocks: int) -> None:
    for i in range(blocks):
        cap._callback(_block(i * BLOCK / SR), BLOCK, None, None)


def test_long_recording_yields_two_chunks(tmp_path: Path) -> None:
    cap, events, chunks = _capture(tmp_path)
    with patch("talkdraft.recorder.sd", _mock_sd()):
        cap.start(lambda path, index: chunks.append((path, index)))
        _feed(cap, 150)
        cap._extract_chunk()  # timer tick at 15 s
        _feed(cap, 13)
        recording = cap.stop()

    assert recording == tmp_path / "recordings" / "take.pcm"
    assert [index for _, index in chunks] == [0, 1]
    assert [p.name for p, _ in chunks] == ["chunk-take-0.wav", "chunk-take-1.wav"]
    assert sf.info(str(chunks[0][0])).frames == 15 * 16_000
    assert sf.info(str(chunks[1][0])).frames == int(1.3 * 16_000)
    assert sf.info(str(chunks[0][0])).samplerate == 16_000

    # Duration matches wall-clock audio within one buffer
    assert abs(cap.duration_s - 16.3) <= BLOCK / SR
    assert pcm_frame_count(recording) == cap.frames_written

    ready = [e for e in events.drain() if isinstance(e, ChunkReady)]
    assert [e.index for e in ready] == [0, 1]


def test_short_recording_produces_no_chunk(tmp_path: Path) -> None:
    cap, _events, chunks = _capture(tmp_path)
    with patch("talkdraft.recorder.sd", _mock_sd()):
        cap.start(lambda path, index: chunks.append((path, index)))
        _feed(cap, 3)
        recording = cap.stop()

    assert chunks == []
    assert cap.frames_written == 4_800
    assert pcm_frame_count(recording) == 4_800


def test_early_tick_does_not_reuse_index(tmp_path: Path) -> None:
    cap, _events, chunks = _capture(tmp_path, chunk_interval_s=2.0)
    with patch("talkdraft.recorder.sd", _mock_sd()):
        cap.start(lambda path, index: chunks.append((path, index)))
        _feed(cap, 19)  # 1.9 s, slightly before the 2 s boundary
        cap._extract_chunk()
        _feed(cap, 10)
        cap._extract_chunk()
        cap.stop()

    indices = [index for _, index in chunks]
    assert indices == [0, 1]


def test_stop_is_idempotent(tmp_path: Path) -> None:
    cap, _events, _chunks = _capture(tmp_path)
    sd = _mock_sd()
    with patch("talkdraft.recorder.sd", sd):
        cap.start()
        _feed(cap, 10)
        first = cap.stop()
        second = cap.stop()
    assert first == second
    sd.InputStream.return_value.stop.assert_called_once()
    assert not cap.is_running()


def test_stream_opened_at_device_format(tmp_path: Path) -> None:
    cap, _events, _chunks = _capture(tmp_path)
    sd = _mock_sd(samplerate=44_100.0, channels=1)
    with patch("talkdraft.recorder.sd", sd):
        cap.start()
        cap.stop()
    kwargs = sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 44_100
    assert kwargs["channels"] == 1
    assert kwargs["dtype"] == "float32"


def test_level_and_spectrum_events(tmp_path: Path) -> None:
    cap, events, _chunks = _capture(tmp_path)
    with patch("talkdraft.recorder.sd", _mock_sd()):
        cap.start()
        _feed(cap, 1)
        cap.stop()
    drained = events.drain()
    levels = [e for e in drained if isinstance(e, AudioLevel)]
    spectra = [e for e in drained if isinstance(e, Spectrum)]
    assert len(levels) == 1 and 0.0 < levels[0].level <= 1.0
    assert len(spectra) == 1 and len(spectra[0].bands) == 14


def test_append_failure_degrades_recording(tmp_path: Path, monkeypatch) -> None:
    writer = MagicMock()
    writer.write.side_effect = RuntimeError("disk full")
    monkeypatch.setattr("talkdraft.recorder.open_pcm_writer", lambda _path: writer)

    cap, events, chunks = _capture(tmp_path)
    with patch("talkdraft.recorder.sd", _mock_sd()):
        cap.start(lambda path, index: chunks.append((path, index)))
        _feed(cap, 2)
        cap.stop()

    assert cap.degraded
    assert cap.dropped_frames == 3_200
    assert cap.frames_written == 0
    assert chunks == []
    degraded = [e for e in events.drain() if isinstance(e, RecordingDegraded)]
    assert len(degraded) == 1
    assert "disk full" in degraded[0].message


def test_missing_portaudio(tmp_path: Path) -> None:
    cap, _events, _chunks = _capture(tmp_path)
    with patch("talkdraft.recorder.sd", None):
        with pytest.raises(CaptureError) as excinfo:
            cap.start()
    assert excinfo.value.kind is CaptureErrorKind.DEVICE_UNAVAILABLE


def test_permission_error_is_classified(tmp_path: Path) -> None:
    cap, _events, _chunks = _capture(tmp_path)
    sd = _mock_sd()
    sd.InputStream.side_effect = Exception("Error opening InputStream: Permission denied")
    with patch("talkdraft.recorder.sd", sd):
        with pytest.raises(CaptureError) as excinfo:
            cap.start()
    assert excinfo.value.kind is CaptureErrorKind.PERMISSION_DENIED
    assert not cap.is_running()


def test_no_input_device(tmp_path: Path) -> None:
    cap, _events, _chunks = _capture(tmp_path)
    sd = _mock_sd(channels=0)
    with patch("talkdraft.recorder.sd", sd):
        with pytest.raises(CaptureError) as excinfo:
            cap.start()
    assert excinfo.value.kind is CaptureErrorKind.DEVICE_UNAVAILABLE

    sd.query_devices.side_effect = Exception("Error querying device -1")
    with patch("talkdraft.recorder.sd", sd):
        with pytest.raises(CaptureError) as excinfo:
            cap.start()
    assert excinfo.value.kind is CaptureErrorKind.DEVICE_UNAVAILABLE


def test_named_device_lookup(tmp_path: Path) -> None:
    sd = MagicMock()
    sd.query_devices.return_value = [
        {"name": "Speakers", "max_input_channels": 0, "default_samplerate": 48_000.0},
        {"name": "USB Mic", "max_input_channels": 1, "default_samplerate": 16_000.0},
    ]
    with patch("talkdraft.recorder.sd", sd):
        assert list_input_devices() == ["USB Mic"]
        cap, _events, _chunks = _capture(tmp_path, device_name="USB Mic")
        cap.start()
        cap.stop()
        assert sd.InputStream.call_args.kwargs["device"] == 1

        other, _e, _c = _capture(tmp_path, device_name="Missing")
        with pytest.raises(CaptureError):
            other.start()


def test_stream_stop_error_still_finalizes_recording(tmp_path: Path) -> None:
    cap, _events, chunks = _capture(tmp_path)
    sd = _mock_sd()
    sd.InputStream.return_value.stop.side_effect = RuntimeError("PortAudio error")
    with patch("talkdraft.recorder.sd", sd):
        cap.start(lambda path, index: chunks.append((path, index)))
        _feed(cap, 8)
        recording = cap.stop()
        again = cap.stop()

    assert recording == again == tmp_path / "recordings" / "take.pcm"
    sd.InputStream.return_value.close.assert_called_once()
    assert not cap.is_running()
    assert cap._writer is None
    assert cap._timer is None
    assert [index for _, index in chunks] == [0]
    assert pcm_frame_count(recording) == cap.frames_written == 12_800
