"""Level and spectrum analysis for live audio feedback."""

from __future__ import annotations

import numpy as np


FFT_SIZE = 512
BAND_COUNT = 14
LEVEL_GAIN = 5.0
SPECTRUM_GAIN = 3.0


def _band_edges(fft_size: int, band_count: int) -> list[tuple[int, int]]:
    """Logarithmic bin ranges: band b covers [nyquist^(b/n), nyquist^((b+1)/n)), skipping bin 0."""
    nyquist = fft_size // 2
    edges: list[tuple[int, int]] = []
    for band in range(band_count):
        low = int(nyquist ** (band / band_count))
        high = int(nyquist ** ((band + 1) / band_count))
        edges.append((max(1, low), min(nyquist, high)))
    return edges


class SignalAnalyzer:
    """RMS level and banded FFT spectrum of a mono PCM frame.

    The Hann window and band edges are computed once and reused for every
    frame; calls are otherwise stateless and safe on the audio thread.
    """

    def __init__(self, fft_size: int = FFT_SIZE, band_count: int = BAND_COUNT) -> None:
        self.fft_size = fft_size
        self.band_count = band_count
        n = np.arange(fft_size, dtype=np.float32)
        self._window = (0.5 - 0.5 * np.cos(2.0 * np.pi * n / fft_size)).astype(np.float32)
        self._edges = _band_edges(fft_size, band_count)

    def rms(self, samples: np.ndarray) -> float:
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        if x.size == 0:
            return 0.0
        value = float(np.sqrt(np.mean(np.square(x))))
        if not np.isfinite(value):
            return 0.0
        return min(1.0, value * LEVEL_GAIN)

    def spectrum(self, samples: np.ndarray) -> list[float]:
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        frame = np.zeros(self.fft_size, dtype=np.float32)
        n = min(x.size, self.fft_size)
        frame[:n] = x[:n]
        magnitudes = np.abs(np.fft.rfft(frame * self._window))[: self.fft_size // 2]

        bands = np.zeros(self.band_count, dtype=np.float64)
        for i, (start, end) in enumerate(self._edges):
            if end > start:
                bands[i] = float(np.mean(magnitudes[start:end]))

        peak = float(np.max(bands)) if bands.size else 0.0
        if peak > 0.0 and np.isfinite(peak):
            bands = bands / peak
        else:
            bands[:] = 0.0
        return [float(v) for v in np.minimum(1.0, bands * SPECTRUM_GAIN)]


_default = SignalAnalyzer()


def rms_level(samples: np.ndarray) -> float:
    return _default.rms(samples)


def spectrum_bands(samples: np.ndarray) -> list[float]:
    return _default.spectrum(samples)
