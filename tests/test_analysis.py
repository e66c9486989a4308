import numpy as np

from talkdraft.analysis import BAND_COUNT, FFT_SIZE, SignalAnalyzer, rms_level, spectrum_bands


def _sine_at_bin(bin_index: int, sr: int = 48_000, n: int = FFT_SIZE, amp: float = 0.5) -> np.ndarray:
    freq = bin_index * sr / FFT_SIZE
    t = np.arange(n) / sr
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_silence_is_zero_level_and_flat_spectrum() -> None:
    silence = np.zeros(512, dtype=np.float32)
    assert rms_level(silence) == 0.0
    assert spectrum_bands(silence) == [0.0] * BAND_COUNT


def test_empty_frame() -> None:
    assert rms_level(np.zeros(0, dtype=np.float32)) == 0.0
    assert spectrum_bands(np.zeros(0, dtype=np.float32)) == [0.0] * BAND_COUNT


def test_level_is_scaled_and_clamped() -> None:
    quiet = np.full(512, 0.1, dtype=np.float32)
    loud = np.full(512, 0.9, dtype=np.float32)
    assert abs(rms_level(quiet) - 0.5) < 1e-6
    assert rms_level(loud) == 1.0


def test_non_finite_level_degrades_to_zero() -> None:
    frame = np.full(16, np.inf, dtype=np.float32)
    assert rms_level(frame) == 0.0


def test_sine_peaks_in_its_band() -> None:
    # Bin 40 falls in band 9, which spans bins [35, 52)
    bands = spectrum_bands(_sine_at_bin(40))
    assert len(bands) == BAND_COUNT
    assert int(np.argmax(bands)) == 9
    assert bands[9] == 1.0
    assert max(bands[:6]) < 0.1
    assert all(0.0 <= b <= 1.0 for b in bands)


def test_short_frame_is_zero_padded() -> None:
    analyzer = SignalAnalyzer()
    bands = analyzer.spectrum(_sine_at_bin(40, n=256))
    assert len(bands) == BAND_COUNT
    assert max(bands) == 1.0


def test_long_frame_is_truncated() -> None:
    analyzer = SignalAnalyzer()
    bands = analyzer.spectrum(_sine_at_bin(40, n=4096))
    assert int(np.argmax(bands)) == 9
