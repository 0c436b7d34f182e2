"""CameraAgent -- a simulated camera in the network.

Architecture
------------
A camera knows its geometry (position, heading, viewing angle, range),
which targets it can currently see and how well (``visible``: target ->
confidence), its neighbours, and a bounded resource pool.  Everything
that involves *deciding* (auctions, ownership, which neighbours to tell)
lives in the camera's DecisionNode; the camera is the node's body.

Ownership:
  Engine owns CameraAgent owns DecisionNode.  The node refers back to its
  camera through a weak reference only.  Neighbour links are lookups.

Visibility model (``update_visibility``):
  heading vector  = (sin h, cos h)          0 = north (+y), clockwise
  angle           = acos(heading . unit(target - camera))
  visible iff     d <= range and angle < viewing_angle / 2
  dist_conf       = 1 / (d + (range - d) / range)
  ang_conf        = 1 for a 360 degree view, else (half - angle) / half
  confidence      = dist_conf * ang_conf

Lifecycle:
  online -> offline_for(n) -> (n ticks) -> online
  online -> offline_forever -> (bring_online) -> online
  While offline the camera answers every query with a sentinel or an empty
  collection instead of raising, so callers never branch on liveness.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from .messages import Message, MessageType
from .stats import safe_record

if TYPE_CHECKING:
    from .decision import DecisionNode
    from .stats import Statistics
    from .target import Target

OFFLINE_NAME = "Offline"


class OnlineState(str, Enum):
    ONLINE = "online"
    OFFLINE_FOR = "offline_for"
    OFFLINE_FOREVER = "offline_forever"


class Resources:
    """Bounded, non-negative resource pool."""

    def __init__(self, total: float = 1.0) -> None:
        self._total = total
        self._available = total

    @property
    def available(self) -> float:
        return self._available

    @property
    def total(self) -> float:
        return self._total

    def reduce(self, amount: float) -> None:
        self._available = max(0.0, self._available - amount)

    def add(self, amount: float) -> None:
        self._available = min(self._total, self._available + amount)


@dataclass
class _Pending:
    """A queued outbound message and the ticks left until delivery."""

    message: Message
    remaining: int


class CameraAgent:
    """A camera node: geometry, visibility, neighbours, and messaging."""

    def __init__(
        self,
        camera_id: str,
        x: float,
        y: float,
        heading: float,
        viewing_angle: float,
        range: float,
        node: DecisionNode,
        limit: int = 0,
        stats: Statistics | None = None,
        comm_delay: int = 0,
        max_visibility: float | None = None,
    ) -> None:
        self._camera_id = camera_id
        self.x = x
        self.y = y
        self.heading = heading              # radians
        self.viewing_angle = viewing_angle  # radians
        self.range = range
        self.initial_range = range
        self.max_visibility = max_visibility
        self._limit = limit
        self._stats = stats
        self._comm_delay = comm_delay
        self._resources = Resources()
        self._neighbours: list[CameraAgent] = []
        self._visible: dict[Target, float] = {}
        self._outbox: list[_Pending] = []
        self._offline_for = 0
        self._offline_forever = False

        if max_visibility is not None and self.range >= max_visibility:
            self.range = max_visibility * 0.8

        self._node = node
        node.set_controller(self)

    # -- Identity & lifecycle -----------------------------------------------

    @property
    def camera_id(self) -> str:
        """Configured name, available regardless of online state."""
        return self._camera_id

    @property
    def name(self) -> str:
        return OFFLINE_NAME if self.is_offline else self._camera_id

    @property
    def is_offline(self) -> bool:
        return self._offline_forever or self._offline_for > 0

    @property
    def online_state(self) -> OnlineState:
        if self._offline_forever:
            return OnlineState.OFFLINE_FOREVER
        if self._offline_for > 0:
            return OnlineState.OFFLINE_FOR
        return OnlineState.ONLINE

    @property
    def offline_for(self) -> int:
        """Remaining offline ticks; -1 while offline forever."""
        return -1 if self._offline_forever else self._offline_for

    def set_offline(self, duration: int) -> None:
        """Go offline for *duration* ticks, or for good when duration == -1."""
        if duration == -1:
            self._offline_forever = True
        elif duration > 0:
            self._offline_for = duration
        logger.debug(f"Camera {self._camera_id} offline for {duration}")

    def bring_online(self) -> None:
        """Explicit reset of any offline state, including offline-forever."""
        self._offline_forever = False
        self._offline_for = 0

    def tick_offline(self) -> None:
        if self._offline_for > 0:
            self._offline_for -= 1

    def reset_camera(self) -> None:
        """Forget neighbours and resources (knowledge loss after a failure).

        The neighbour relation stays symmetric: former neighbours drop this
        camera too.
        """
        for other in list(self._neighbours):
            other.remove_neighbour(self)
        self._neighbours = []
        self._resources = Resources()

    # -- Decision node --------------------------------------------------------

    @property
    def ai_node(self) -> DecisionNode:
        return self._node

    def set_ai_node(self, node: DecisionNode) -> None:
        node.set_controller(self)
        if node.comm is not None:
            node.comm.bind(node, self)
        self._node = node

    def update_ai(self) -> None:
        """Per-tick update: count down an outage, or run the node and flush."""
        if self.is_offline:
            self.tick_offline()
        else:
            self._node.update()
            self.forward_messages()

    # -- Resources ------------------------------------------------------------

    @property
    def available_resources(self) -> float:
        return 0.0 if self.is_offline else self._resources.available

    @property
    def all_resources(self) -> float:
        return -1.0 if self.is_offline else self._resources.total

    @property
    def configured_limit(self) -> int:
        return self._limit

    @property
    def limit(self) -> int:
        """Maximum number of tracked targets (0 = unlimited, -1 offline)."""
        return -1 if self.is_offline else self._limit

    def reduce_resources(self, amount: float) -> None:
        if not self.is_offline:
            self._resources.reduce(amount)

    def add_resources(self, amount: float) -> None:
        if not self.is_offline:
            self._resources.add(amount)

    # -- Neighbours -----------------------------------------------------------

    @property
    def neighbours(self) -> list[CameraAgent]:
        return [] if self.is_offline else list(self._neighbours)

    @property
    def neighbour_ids(self) -> list[str]:
        """Configured neighbour names, regardless of online state."""
        return [n.camera_id for n in self._neighbours]

    def add_neighbour(self, other: CameraAgent) -> None:
        if other is self:
            return
        if other not in self._neighbours:
            self._neighbours.append(other)

    def remove_neighbour(self, other: CameraAgent) -> None:
        if other in self._neighbours:
            self._neighbours.remove(other)

    def _neighbour_by_id(self, camera_id: str) -> CameraAgent | None:
        for n in self._neighbours:
            if n.camera_id == camera_id:
                return n
        return None

    # -- Visibility -------------------------------------------------------------

    def update_visibility(self, target: Target) -> float:
        """Recompute confidence for *target* and update ``visible``."""
        if self.is_offline:
            return 0.0

        dx = target.x - self.x
        dy = target.y - self.y
        dist = math.hypot(dx, dy)

        confidence = 0.0
        if dist <= self.range:
            if dist == 0:
                angle = 0.0
            else:
                dot = (math.sin(self.heading) * dx + math.cos(self.heading) * dy) / dist
                angle = math.acos(max(-1.0, min(1.0, dot)))
            half = self.viewing_angle / 2
            if angle < half:
                dist_conf = 1 / (dist + (self.range - dist) / self.range)
                ang_conf = 1.0
                if not math.isclose(math.degrees(self.viewing_angle), 360.0):
                    ang_conf = (half - angle) / half
                confidence = min(1.0, dist_conf * ang_conf)

        if confidence > 0:
            self._visible[target] = confidence
        else:
            self._visible.pop(target, None)
        return confidence

    @property
    def visible_objects(self) -> dict[Target, float]:
        return {} if self.is_offline else dict(self._visible)

    @property
    def num_visible_objects(self) -> int:
        return 0 if self.is_offline else len(self._visible)

    def confidence_for(self, target: Target) -> float:
        if self.is_offline:
            return 0.0
        return self._visible.get(target, 0.0)

    def remove_object(self, features: tuple[float, ...] | list[float]) -> None:
        """Forget a target that left the simulation (visibility and node state)."""
        key = tuple(float(f) for f in features)
        for t in [t for t in self._visible if t.features == key]:
            del self._visible[t]
        self._node.forget_object(key)

    @property
    def tracked_objects(self) -> dict[tuple[float, ...], Target]:
        """Targets owned by this camera's node, keyed by features."""
        if self.is_offline:
            return {}
        return dict(self._node.owned_objects)

    # -- Geometry -------------------------------------------------------------

    def change(
        self,
        x: float | None = None,
        y: float | None = None,
        heading_deg: float | None = None,
        angle_deg: float | None = None,
        range: float | None = None,
    ) -> None:
        """Mutate geometry mid-run.  ``None`` leaves a field untouched."""
        if heading_deg is not None:
            self.heading = math.radians(heading_deg)
        if x is not None:
            self.x = x
        if y is not None:
            self.y = y
        if angle_deg is not None:
            self.viewing_angle = math.radians(angle_deg)
        if range is not None:
            self.range = range

    @property
    def zoom(self) -> float:
        if self.max_visibility is None:
            return 1.0
        return self.range / self.max_visibility

    def increase_range(self, delta: float) -> None:
        if self.max_visibility is not None and self.range + delta >= self.max_visibility:
            self.range = self.max_visibility * 0.8
        else:
            self.range += delta

    # -- Messaging --------------------------------------------------------------

    def create_message(self, to: str, msg_type: MessageType, payload: Any) -> Message | None:
        if self.is_offline:
            return None
        return Message(self._camera_id, to, msg_type, payload)

    def _record_send(self, msg_type: MessageType) -> None:
        if self._stats is None:
            return
        if msg_type == MessageType.START_SEARCH:
            safe_record(self._stats.add_communication, 1.0, self._camera_id)
        elif msg_type == MessageType.START_TRACKING:
            safe_record(self._stats.add_handover, 1.0)

    def _bounce(self) -> Message:
        return Message(self._camera_id, self._camera_id,
                       MessageType.ERROR_BAD_DESTINATION_ADDRESS, None)

    def send_message(self, to: str, msg_type: MessageType, payload: Any) -> Message | None:
        """Send to neighbour *to*.

        Returns the recipient node's reply, an ERROR_BAD_DESTINATION_ADDRESS
        message when *to* is unknown or offline, or None when the message
        was queued (comm delay) or this camera is offline.
        """
        if self.is_offline:
            return None

        if self._comm_delay > 0:
            msg = self.create_message(to, msg_type, payload)
            self._record_send(msg_type)
            self._outbox.append(_Pending(msg, self._comm_delay))
            return None

        recipient = self._neighbour_by_id(to)
        if recipient is None or recipient.is_offline:
            logger.debug(f"{self._camera_id}: cannot deliver {msg_type.value} to '{to}'")
            return self._bounce()

        self._record_send(msg_type)
        msg = self.create_message(to, msg_type, payload)
        return recipient.ai_node.receive_message(msg)

    def forward_messages(self) -> Message | None:
        """Count down the outbox and deliver what is due.

        Due messages are dequeued whether or not they could be delivered.
        Returns the last reply received, if any.
        """
        reply = None
        still_pending: list[_Pending] = []
        for pending in self._outbox:
            pending.remaining -= 1
            if pending.remaining > 0:
                still_pending.append(pending)
                continue
            recipient = self._neighbour_by_id(pending.message.recipient)
            if recipient is not None and not recipient.is_offline:
                reply = recipient.ai_node.receive_message(pending.message)
        self._outbox = still_pending
        return reply

    @property
    def pending_messages(self) -> int:
        return len(self._outbox)

    # -- Serialisation ----------------------------------------------------------

    def to_dict(self) -> dict:
        """Render / snapshot descriptor (angles in degrees)."""
        return {
            "name": self._camera_id,
            "x": self.x,
            "y": self.y,
            "heading": math.degrees(self.heading),
            "viewing_angle": math.degrees(self.viewing_angle),
            "range": self.range,
            "online_state": self.online_state.value,
            "limit": self._limit,
            "ai_algorithm": self._node.kind,
            "comm": self._node.comm.index if self._node.comm is not None else 0,
            "visible": len(self._visible) if not self.is_offline else 0,
        }

    def __repr__(self) -> str:
        return f"CameraAgent({self._camera_id!r}, state={self.online_state.value})"
