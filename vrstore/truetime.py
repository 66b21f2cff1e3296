"""A simulated TrueTime clock with a fixed skew and a reported error bound."""

from __future__ import annotations

import random
import time
from typing import Callable

__all__ = ["TrueTime"]

_USEC_PER_SEC = 1_000_000


class TrueTime:
    """Wall-clock time shifted by a random skew, packed as ``(sec << 32) | usec``.

    A non-zero ``skew`` draws the simulated skew uniformly from
    ``[-skew // 2, skew - skew // 2)`` microseconds. ``error_bound`` is the
    uncertainty reported alongside every reading.
    """

    def __init__(
        self,
        skew: int = 0,
        error_bound: int = 0,
        *,
        clock: Callable[[], int] = time.time_ns,
        rng: random.Random | None = None,
    ):
        if skew < 0 or error_bound < 0:
            raise ValueError("skew and error bound must not be negative")
        self.error = error_bound
        self._clock = clock
        if skew == 0:
            self.skew = 0
        else:
            source = rng if rng is not None else random.Random()
            self.skew = source.randrange(skew) - skew // 2

    def get_time(self) -> int:
        """Return the skewed time as seconds in the high 32 bits, microseconds low."""
        micros = self._clock() // 1000 + self.skew
        seconds, usec = divmod(micros, _USEC_PER_SEC)
        return (seconds << 32) | usec

    def get_time_and_error(self) -> tuple[int, int]:
        """Return the current time together with the error bound."""
        return self.get_time(), self.error