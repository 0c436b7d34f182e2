"""Communication policies -- who hears about a target.

A policy belongs to one decision node and decides, per message, which of
the camera's neighbours receive it:

  - Broadcast:           every neighbour, always
  - ThresholdMulticast:  ("step") neighbours whose vision-graph link for the
                         target beats one COMM-stream draw, broadcast if none
  - Smooth:              threshold multicast with a per-target threshold
                         that adapts to how often multicasts reach anyone
  - Fix:                 threshold multicast over the vision graph and
                         neighbour set frozen at construction

Policies never own the node or the camera; both are held by weak
reference, the node owns its policy.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from .messages import MessageType
from .random_streams import RandomUse
from .vision_graph import DEFAULT_LINK_STRENGTH

if TYPE_CHECKING:
    from .camera import CameraAgent
    from .decision import DecisionNode
    from .target import Target
    from .vision_graph import VisionGraph

# Smooth threshold bounds and steps
SMOOTH_INITIAL = 1.0
SMOOTH_MIN = 0.05
SMOOTH_DECAY = 0.8
SMOOTH_RELAX = 0.05

ThresholdLaw = Callable[[float, bool], float]


def default_adjust_threshold(prev: float, reached_any: bool) -> float:
    """Lower the bar after a miss, relax it back toward 1 after a hit."""
    nxt = prev + SMOOTH_RELAX if reached_any else prev * SMOOTH_DECAY
    return min(SMOOTH_INITIAL, max(SMOOTH_MIN, nxt))


class CommunicationPolicy:
    """Base policy.  Subclasses override ``multicast``."""

    index = -1
    name = "abstract"

    def __init__(self, node: DecisionNode, agent: CameraAgent) -> None:
        self._node_ref: weakref.ref[DecisionNode] = weakref.ref(node)
        self._agent_ref: weakref.ref[CameraAgent] = weakref.ref(agent)

    def bind(self, node: DecisionNode, agent: CameraAgent) -> None:
        """Re-point the policy at a (new) node and camera."""
        self._node_ref = weakref.ref(node)
        self._agent_ref = weakref.ref(agent)

    @property
    def node(self) -> DecisionNode:
        node = self._node_ref()
        if node is None:
            raise RuntimeError(f"{type(self).__name__} outlived its decision node")
        return node

    @property
    def agent(self) -> CameraAgent:
        agent = self._agent_ref()
        if agent is None:
            raise RuntimeError(f"{type(self).__name__} outlived its camera")
        return agent

    def multicast(self, msg_type: MessageType, payload: Any) -> None:
        raise NotImplementedError

    def broadcast(self, msg_type: MessageType, payload: Any) -> None:
        """Send to every current neighbour."""
        agent = self.agent
        node = self.node
        for neighbour in agent.neighbours:
            node.increment_sent_messages()
            agent.send_message(neighbour.name, msg_type, payload)

    def _send(self, name: str, msg_type: MessageType, payload: Any) -> None:
        self.node.increment_sent_messages()
        self.agent.send_message(name, msg_type, payload)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Broadcast(CommunicationPolicy):
    index = 0
    name = "broadcast"

    def multicast(self, msg_type: MessageType, payload: Any) -> None:
        self.broadcast(msg_type, payload)


class ThresholdMulticast(CommunicationPolicy):
    """Probabilistic multicast gated by vision-graph link strength.

    START_SEARCH about T draws one r from the COMM stream and reaches each
    neighbour whose link p (default 0.1) satisfies ``_selects(p, r, T)``;
    every neighbour reached is remembered in the node's advertised-set.
    Nobody reached means broadcast.

    STOP_SEARCH is retracted only from neighbours that were told, or
    broadcast when nothing has been advertised at all.  Retractions are not
    counted as sent messages.  Other message types are not multicast.

    With the fail-safe enabled, a per-target counter is re-armed by every
    multicast that reaches a neighbour.  Attempts that reach nobody (or, in
    "tick" mode, ticks) run it down; once it hits zero the next START_SEARCH
    is broadcast without a draw.
    """

    index = 2
    name = "step"

    # -- hooks for subclasses ---------------------------------------------

    def _graph(self) -> VisionGraph:
        return self.node.vision_graph

    def _candidates(self) -> list[CameraAgent]:
        return self.agent.neighbours

    def _link(self, name: str, target: Target) -> float:
        graph = self._graph()
        if graph.contains(name, target):
            return graph.get(name, target)
        return DEFAULT_LINK_STRENGTH

    def _selects(self, p: float, r: float, target: Target) -> bool:
        return p > r

    def _after_attempt(self, target: Target, reached_any: bool) -> None:
        pass

    # -- policy -------------------------------------------------------------

    def multicast(self, msg_type: MessageType, payload: Any) -> None:
        if msg_type == MessageType.START_SEARCH:
            self._start_search(payload)
        elif msg_type == MessageType.STOP_SEARCH:
            self._stop_search(payload)

    def _start_search(self, target: Target) -> None:
        node = self.node
        cfg = node.settings

        failsafe = cfg.use_broadcast_as_failsafe
        steps = node.steps_till_broadcast
        if failsafe:
            steps.setdefault(target, cfg.steps_till_broadcast)
            if steps[target] <= 0:
                logger.debug(f"{self.agent.camera_id}: fail-safe broadcast for {target.features}")
                steps[target] = cfg.steps_till_broadcast
                self.broadcast(MessageType.START_SEARCH, target)
                return

        r = node.random_gen.next_double(RandomUse.COMM)
        advertised = node.advertised_objects
        sent = 0
        for neighbour in self._candidates():
            if neighbour.is_offline:
                continue
            name = neighbour.name
            if self._selects(self._link(name, target), r, target):
                sent += 1
                self._send(name, MessageType.START_SEARCH, target)
                names = advertised.setdefault(target, [])
                if name not in names:
                    names.append(name)

        self._after_attempt(target, sent > 0)
        if failsafe:
            if sent > 0:
                steps[target] = cfg.steps_till_broadcast
            elif cfg.failsafe_countdown == "attempt":
                steps[target] -= 1
        if sent == 0:
            logger.debug(f"{self.agent.camera_id} tried to multicast, broadcasting instead")
            self.broadcast(MessageType.START_SEARCH, target)

    def _stop_search(self, target: Target) -> None:
        node = self.node
        node.steps_till_broadcast.pop(target, None)
        advertised = node.advertised_objects
        if not advertised:
            self.broadcast(MessageType.STOP_SEARCH, target)
            return
        names = advertised.pop(target, None)
        if names is None:
            return
        for name in names:
            self.agent.send_message(name, MessageType.STOP_SEARCH, target)


class Smooth(ThresholdMulticast):
    """Threshold multicast with an adaptive per-target threshold.

    A neighbour is reached iff ``p > theta_T * r``.  theta_T starts at 1.0
    and is updated after every START_SEARCH attempt by *adjust_threshold*.
    """

    index = 1
    name = "smooth"

    def __init__(self, node: DecisionNode, agent: CameraAgent,
                 adjust_threshold: ThresholdLaw = default_adjust_threshold) -> None:
        super().__init__(node, agent)
        self.adjust_threshold = adjust_threshold
        self.thresholds: dict[Target, float] = {}

    def threshold(self, target: Target) -> float:
        return self.thresholds.get(target, SMOOTH_INITIAL)

    def _selects(self, p: float, r: float, target: Target) -> bool:
        return p > self.threshold(target) * r

    def _after_attempt(self, target: Target, reached_any: bool) -> None:
        self.thresholds[target] = self.adjust_threshold(self.threshold(target), reached_any)


class Fix(ThresholdMulticast):
    """Threshold multicast over a snapshot taken at construction."""

    index = 3
    name = "fix"

    def __init__(self, node: DecisionNode, agent: CameraAgent) -> None:
        super().__init__(node, agent)
        self._frozen_graph = node.vision_graph.copy()
        self._frozen_graph.static = True
        self._frozen_names = frozenset(n.camera_id for n in agent.neighbours)

    @property
    def frozen_neighbours(self) -> frozenset[str]:
        return self._frozen_names

    def _graph(self) -> VisionGraph:
        return self._frozen_graph

    def _candidates(self) -> list[CameraAgent]:
        return [n for n in self.agent.neighbours if n.camera_id in self._frozen_names]


COMM_POLICIES: dict[int, type[CommunicationPolicy]] = {
    Broadcast.index: Broadcast,
    Smooth.index: Smooth,
    ThresholdMulticast.index: ThresholdMulticast,
    Fix.index: Fix,
}

CUSTOM_COMM = 4

COMM_POLICY_NAMES: dict[str, type[CommunicationPolicy]] = {
    cls.name: cls for cls in COMM_POLICIES.values()
}
