"""VisionGraph -- link strength between cameras, per target.

A link ``(camera name, target features) -> p`` is the probability that
telling that camera about that target is worthwhile.  Scenario files seed
per-camera base links (1.0 for each listed neighbour); pair links are
learned at runtime from successful handovers and evaporate every tick.

A static graph never learns and never evaporates.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .target import Target

DEFAULT_LINK_STRENGTH = 0.1

# Links weaker than this after evaporation are dropped
_MIN_LINK = 1e-3


class VisionGraph:
    def __init__(self, base: dict[str, float] | None = None, static: bool = False) -> None:
        self.static = static
        self._base: dict[str, float] = dict(base or {})
        self._links: dict[tuple[str, tuple[float, ...]], float] = {}

    def contains(self, name: str, target: Target) -> bool:
        return (name, target.features) in self._links or name in self._base

    def get(self, name: str, target: Target, default: float = DEFAULT_LINK_STRENGTH) -> float:
        """Pair link if learned, else the camera's base link, else *default*."""
        key = (name, target.features)
        if key in self._links:
            return self._links[key]
        return self._base.get(name, default)

    def set(self, name: str, target: Target, value: float) -> None:
        if self.static:
            return
        self._links[(name, target.features)] = min(1.0, max(0.0, value))

    def strengthen(self, name: str, target: Target, amount: float) -> None:
        """Reinforce a link after a successful handover to *name*."""
        if self.static:
            return
        current = self._links.get((name, target.features), 0.0)
        self.set(name, target, current + amount)

    def evaporate(self, factor: float) -> None:
        """Decay every learned link by *factor*."""
        if self.static:
            return
        for key in list(self._links):
            value = self._links[key] * factor
            if value < _MIN_LINK:
                del self._links[key]
            else:
                self._links[key] = value

    def drawable(self) -> dict[str, float]:
        """Strongest link per camera name, for renderers."""
        out = dict(self._base)
        for (name, _features), value in self._links.items():
            out[name] = max(out.get(name, 0.0), value)
        return out

    @property
    def base(self) -> dict[str, float]:
        """Per-camera links that apply to every target."""
        return dict(self._base)

    def copy(self) -> VisionGraph:
        return copy.deepcopy(self)

    def __len__(self) -> int:
        return len(self._links) + len(self._base)
