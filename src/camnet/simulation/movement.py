"""Movement strategies for targets.

Heading convention matches the cameras: radians, 0 = north (+y),
pi/2 = east (+x), so a unit step is ``(sin h, cos h)``.

Strategies are built by name through ``create_movement()``:

  - "straight":  constant heading and speed, reflects off the world edge
  - "waypoints": follows a closed loop of waypoints at constant speed
  - "brownian" / "random_walk": heading perturbed each tick by
    N(mean, std) drawn from the UNIV stream, reflects off the world edge
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

from .exceptions import ConfigurationError
from .random_streams import RandomStreamSet, RandomUse


@dataclass(frozen=True)
class WorldBounds:
    """Axis-aligned simulation field."""

    min_x: float = -30.0
    max_x: float = 30.0
    min_y: float = -30.0
    max_y: float = 30.0

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


class MovementStrategy:
    """Base class: owns position, heading and speed of one target."""

    name = "abstract"

    def __init__(self, x: float, y: float, heading: float, speed: float,
                 bounds: WorldBounds) -> None:
        self.x = x
        self.y = y
        self.heading = heading  # radians
        self.speed = speed
        self.bounds = bounds

    def update(self) -> None:
        raise NotImplementedError

    def _step_forward(self) -> None:
        """Advance one tick along the heading, reflecting off the edges."""
        nx = self.x + self.speed * math.sin(self.heading)
        ny = self.y + self.speed * math.cos(self.heading)
        b = self.bounds
        if nx < b.min_x or nx > b.max_x:
            self.heading = -self.heading
            nx = min(max(nx, b.min_x), b.max_x)
        if ny < b.min_y or ny > b.max_y:
            self.heading = math.pi - self.heading
            ny = min(max(ny, b.min_y), b.max_y)
        self.heading = math.atan2(math.sin(self.heading), math.cos(self.heading))
        self.x, self.y = nx, ny

    def describe(self) -> dict:
        """Parameters needed to rebuild this strategy (scenario snapshot)."""
        return {"movement": self.name}


class Straight(MovementStrategy):
    name = "straight"

    def update(self) -> None:
        self._step_forward()


class Waypoints(MovementStrategy):
    """Loop through ``waypoints``; after the last one, head back to the first."""

    name = "waypoints"

    def __init__(self, x: float, y: float, heading: float, speed: float,
                 bounds: WorldBounds, waypoints: list[tuple[float, float]]) -> None:
        super().__init__(x, y, heading, speed, bounds)
        if not waypoints:
            raise ConfigurationError("waypoints movement needs at least one waypoint")
        self.waypoints = [(float(wx), float(wy)) for wx, wy in waypoints]
        self._index = 0

    @property
    def current_waypoint(self) -> tuple[float, float]:
        return self.waypoints[self._index]

    def update(self) -> None:
        tx, ty = self.current_waypoint
        dx = tx - self.x
        dy = ty - self.y
        dist = math.hypot(dx, dy)
        if dist <= self.speed:
            # Arrive exactly, then aim for the next waypoint
            self.x, self.y = tx, ty
            self._index = (self._index + 1) % len(self.waypoints)
            return
        self.heading = math.atan2(dx, dy)
        self.x += (dx / dist) * self.speed
        self.y += (dy / dist) * self.speed

    def describe(self) -> dict:
        return {"movement": self.name, "waypoints": [list(w) for w in self.waypoints]}


class Brownian(MovementStrategy):
    """Random walk: heading jitters by N(mean, std) degrees every tick."""

    name = "brownian"

    def __init__(self, x: float, y: float, heading: float, speed: float,
                 bounds: WorldBounds, random: RandomStreamSet,
                 mean: float = 0.0, std: float = 1.0) -> None:
        super().__init__(x, y, heading, speed, bounds)
        self._random = random
        self.mean = mean
        self.std = std

    def update(self) -> None:
        jitter = self._random.next_gaussian(RandomUse.UNIV, self.mean, self.std)
        self.heading += math.radians(jitter)
        self._step_forward()

    def describe(self) -> dict:
        return {"movement": self.name, "mean": self.mean, "std": self.std}


MovementFactory = Callable[..., MovementStrategy]


def _make_straight(x, y, heading, speed, bounds, random, waypoints, mean, std):
    return Straight(x, y, heading, speed, bounds)


def _make_waypoints(x, y, heading, speed, bounds, random, waypoints, mean, std):
    return Waypoints(x, y, heading, speed, bounds, waypoints or [])


def _make_brownian(x, y, heading, speed, bounds, random, waypoints, mean, std):
    return Brownian(x, y, heading, speed, bounds, random, mean=mean, std=std)


MOVEMENTS: dict[str, MovementFactory] = {
    "straight": _make_straight,
    "waypoints": _make_waypoints,
    "brownian": _make_brownian,
    "random_walk": _make_brownian,
}


def create_movement(
    name: str,
    x: float,
    y: float,
    heading_deg: float,
    speed: float,
    random: RandomStreamSet,
    bounds: WorldBounds,
    waypoints: list[tuple[float, float]] | None = None,
    mean: float = 0.0,
    std: float = 1.0,
) -> MovementStrategy:
    """Build a movement strategy by name.

    An empty name picks "waypoints" when waypoints are given and
    "straight" otherwise.

    Raises:
        ConfigurationError: unknown name, or start position off the field.
    """
    if not name:
        name = "waypoints" if waypoints else "straight"
    factory = MOVEMENTS.get(name)
    if factory is None:
        raise ConfigurationError(
            f"Unknown movement strategy '{name}' (known: {', '.join(sorted(MOVEMENTS))})"
        )
    if not bounds.contains(x, y):
        raise ConfigurationError(f"Object start position ({x}, {y}) is outside the simulation field")
    return factory(x, y, math.radians(heading_deg), speed, bounds, random, waypoints, mean, std)
