"""Conversion from the hardware capture format to 16 kHz mono."""

from __future__ import annotations

from typing import Optional

import numpy as np

from .common.encoding import TARGET_SAMPLE_RATE


def to_mono(block: np.ndarray) -> np.ndarray:
    """Downmix a (frames, channels) or (frames,) block to float32 mono."""
    x = np.asarray(block, dtype=np.float32)
    if x.ndim == 1:
        return x
    if x.shape[1] == 1:
        return x[:, 0]
    return x.mean(axis=1)


class AudioResampler:
    """Stateful linear resampler.

    Consecutive blocks are treated as one continuous signal: the fractional
    read position and the last input sample carry over between calls, so the
    total output length tracks total input duration instead of drifting by a
    rounding error per block.
    """

    def __init__(self, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE) -> None:
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError("sample rates must be positive")
        self.source_rate = int(source_rate)
        self.target_rate = int(target_rate)
        self._step = self.source_rate / self.target_rate
        # Position of the next output sample, relative to the start of the next block
        self._pos = 0.0
        self._last: Optional[float] = None

    @property
    def passthrough(self) -> bool:
        return self.source_rate == self.target_rate

    def process(self, block: np.ndarray) -> np.ndarray:
        """Return the mono float32 samples at the target rate for `block`."""
        mono = to_mono(block)
        if self.passthrough or mono.size == 0:
            return mono.astype(np.float32, copy=False)

        # Prepend the previous block's last sample so interpolation can span the boundary
        prev = mono[0] if self._last is None else self._last
        extended = np.concatenate(([prev], mono)).astype(np.float32)
        last_index = mono.size - 1

        if self._pos > last_index:
            self._pos -= mono.size
            self._last = float(mono[-1])
            return np.zeros(0, dtype=np.float32)

        count = int(np.floor((last_index - self._pos) / self._step)) + 1
        positions = self._pos + self._step * np.arange(count, dtype=np.float64)
        out = np.interp(positions + 1.0, np.arange(extended.size, dtype=np.float64), extended)

        self._pos = positions[-1] + self._step - mono.size
        self._last = float(mono[-1])
        return out.astype(np.float32)
