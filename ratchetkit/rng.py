"""Reproducible xorshift32 stream for observation masks.

Every mask, bootstrap resample, and decoding trial in the toolkit draws
from this generator, so a (seed, draw count) pair identifies the same
sequence on any machine and across process restarts. numpy's Generator
is not used here because its bit streams are allowed to change between
releases.
"""

from __future__ import annotations

import numpy as np

_MASK32 = 0xFFFFFFFF
_SCALE = float(1 << 24)


class XorShift32:
    """32-bit xorshift generator (shifts 13, 17, 5).

    The seed is reduced modulo 2**32; a zero state is coerced to 1 since
    xorshift never leaves the all-zero state.

    Example:
        rng = XorShift32(42)
        mask = [rng.draw() < 0.5 for _ in range(64)]
        # XorShift32(42) replays exactly the same 64 draws
    """

    def __init__(self, seed: int):
        state = int(seed) & _MASK32
        if state == 0:
            state = 1
        self._state = state

    @property
    def state(self) -> int:
        return self._state

    def next_u32(self) -> int:
        """Advance one step and return the raw 32-bit state."""
        x = self._state
        x ^= (x << 13) & _MASK32
        x ^= x >> 17
        x ^= (x << 5) & _MASK32
        self._state = x
        return x

    def draw(self) -> float:
        """Return the next value in [0, 1) from the upper 24 bits."""
        return (self.next_u32() >> 8) / _SCALE

    def draws(self, n: int) -> np.ndarray:
        """Return the next ``n`` draws as a float64 array."""
        out = np.empty(max(0, int(n)), dtype=np.float64)
        for i in range(out.shape[0]):
            out[i] = self.draw()
        return out
