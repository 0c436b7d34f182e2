"""RandomStreamSet -- seeded random source split into named purposes.

Every consumer of randomness names *why* it draws:

  - UNIV:  placement of random cameras/objects, movement noise, bandits
  - COMM:  communication-policy decisions (multicast threshold draws)
  - ERROR: camera failure injection

Each purpose gets its own numpy Generator derived from the master seed via
``SeedSequence(seed, spawn_key=(purpose,))``.  Turning camera failures off
therefore leaves the multicast draws of a run bit-identical.
"""

from __future__ import annotations

from enum import IntEnum

import numpy as np


class RandomUse(IntEnum):
    """Purpose of a random draw.  The value is the stream's spawn key."""

    UNIV = 0
    COMM = 1
    ERROR = 2


class RandomStreamSet:
    """Independent per-purpose random streams from a single seed."""

    def __init__(self, seed: int = 0) -> None:
        self._seed = int(seed)
        self._streams: dict[RandomUse, np.random.Generator] = {
            use: np.random.default_rng(
                np.random.SeedSequence(self._seed, spawn_key=(int(use),))
            )
            for use in RandomUse
        }

    @property
    def seed(self) -> int:
        return self._seed

    def stream(self, use: RandomUse) -> np.random.Generator:
        return self._streams[use]

    def next_double(self, use: RandomUse) -> float:
        """Uniform float in [0, 1)."""
        return float(self._streams[use].random())

    def next_int(self, bound: int, use: RandomUse) -> int:
        """Uniform int in [0, bound)."""
        if bound <= 0:
            raise ValueError(f"bound must be positive, got {bound}")
        return int(self._streams[use].integers(0, bound))

    def next_gaussian(self, use: RandomUse, mean: float = 0.0, std: float = 1.0) -> float:
        return float(self._streams[use].normal(mean, std))
