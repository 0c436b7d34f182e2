"""Target -- a moving entity the camera network tries to track.

A target is identified by its feature vector, never by object identity:
two Target instances with equal features are the same target for every
dict, set, and message lookup in the simulation.  Position, heading, and
speed live on the movement strategy; the target only delegates.
"""

from __future__ import annotations

import math
from typing import Iterable

from .movement import MovementStrategy


class Target:
    """A traceable object: immutable features plus a movement strategy."""

    def __init__(self, features: Iterable[float], movement: MovementStrategy) -> None:
        self._features = tuple(float(f) for f in features)
        self.movement = movement

    @property
    def features(self) -> tuple[float, ...]:
        return self._features

    @property
    def x(self) -> float:
        return self.movement.x

    @property
    def y(self) -> float:
        return self.movement.y

    @property
    def position(self) -> tuple[float, float]:
        return (self.movement.x, self.movement.y)

    @property
    def heading(self) -> float:
        return self.movement.heading

    @property
    def speed(self) -> float:
        return self.movement.speed

    def update(self) -> None:
        """Advance one tick."""
        self.movement.update()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Target):
            return NotImplemented
        return self._features == other._features

    def __hash__(self) -> int:
        return hash(self._features)

    def __repr__(self) -> str:
        return f"Target(features={list(self._features)}, pos=({self.x:.2f}, {self.y:.2f}))"

    def to_dict(self) -> dict:
        """Serialize for rendering and scenario snapshots (degrees)."""
        return {
            "features": list(self._features),
            "x": self.x,
            "y": self.y,
            "heading": math.degrees(self.heading),
            "speed": self.speed,
            **self.movement.describe(),
        }
