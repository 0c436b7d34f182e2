"""Field-of-view overlap between cameras.

Each camera is modelled as a full circle of radius ``range``; the overlap
of two cameras is the lens-shaped intersection area, computed as the sum
of the two circular segments cut off by the common chord.
"""

from __future__ import annotations

import math
from itertools import combinations
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .camera import CameraAgent


def _segment_angle(cx: float, cy: float, ox: float, oy: float,
                   px: float, py: float) -> float:
    """Full angle at (cx, cy) subtended by the chord through intersection (px, py)."""
    to_other = math.atan2(oy - cy, ox - cx)
    to_point = math.atan2(py - cy, px - cx)
    half = abs(math.atan2(math.sin(to_point - to_other), math.cos(to_point - to_other)))
    return 2 * half


def circle_overlap(x0: float, y0: float, r0: float,
                   x1: float, y1: float, r1: float) -> float:
    """Intersection area of two circles.

    Coincident centres, disjoint circles and tangent circles all give 0.
    """
    dx = x1 - x0
    dy = y1 - y0
    d = math.hypot(dx, dy)
    if d == 0:
        return 0.0

    # Distance from centre 0 to the chord, and half the chord length
    a = (r0 * r0 - r1 * r1 + d * d) / (2 * d)
    h2 = r0 * r0 - a * a
    if h2 <= 0:
        return 0.0
    h = math.sqrt(h2)

    mx = x0 + a * dx / d
    my = y0 + a * dy / d
    px = mx + h * dy / d
    py = my - h * dx / d

    theta0 = _segment_angle(x0, y0, x1, y1, px, py)
    theta1 = _segment_angle(x1, y1, x0, y0, px, py)
    seg0 = r0 * r0 / 2 * abs(theta0 - math.sin(theta0))
    seg1 = r1 * r1 / 2 * abs(theta1 - math.sin(theta1))
    return seg0 + seg1


def calculate_overlap(c1: CameraAgent, c2: CameraAgent) -> float:
    return circle_overlap(c1.x, c1.y, c1.range, c2.x, c2.y, c2.range)


def network_overlap(agents: Iterable[CameraAgent]) -> float:
    """Summed pairwise overlap, each unordered online pair counted once."""
    online = [a for a in agents if not a.is_offline]
    return sum(calculate_overlap(a, b) for a, b in combinations(online, 2))
