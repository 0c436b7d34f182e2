"""Decision nodes -- per-camera auction and ownership logic.

Each camera owns one DecisionNode.  The node decides which targets its
camera tracks, and trades targets with neighbours through a compact
sealed-bid handover auction:

  owner      advertise: START_SEARCH(T) via the communication policy,
             auction for T opens for ``auction_duration`` ticks
  neighbour  sees T?  BID(T, confidence) back to the owner
  owner      auction closes: best bid beats own confidence?
               START_TRACKING(Bid(T, price)) to the winner,
               STOP_SEARCH(T) to everyone who was told,
               vision-graph link to the winner strengthened
  winner     takes ownership, pays ``price``; seller receives it

Searches that were started by the engine or the global registration
(sender ``""``) have no owner: the first camera to see the target claims
it and retracts the search.

Node kinds differ only in when owners advertise:

  - ActiveAuctionNode:  every owned target, whenever no auction is open
  - PassiveAuctionNode: only targets whose confidence fell below
    ``passive_threshold`` (or that are lost)
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any

from loguru import logger

from .messages import Bid, Message, MessageType
from .vision_graph import VisionGraph

if TYPE_CHECKING:
    from ..config import Settings
    from .bandit import StrategySelector
    from .camera import CameraAgent
    from .comms import CommunicationPolicy
    from .random_streams import RandomStreamSet
    from .registration import GlobalRegistration
    from .target import Target

# Node-local parameters accepted by set_param(), with their types
TUNABLE_PARAMS: dict[str, type] = {
    "auction_duration": int,
    "search_timeout": int,
    "passive_threshold": float,
    "vg_strengthen": float,
    "vg_evaporation": float,
}


class DecisionNode:
    """Auction / ownership state of one camera."""

    kind = "abstract"

    def __init__(
        self,
        random_gen: RandomStreamSet,
        settings: Settings,
        vision_graph: VisionGraph | None = None,
        bandit_solver: StrategySelector | None = None,
        registration: GlobalRegistration | None = None,
    ) -> None:
        self.random_gen = random_gen
        self.settings = settings
        self.vision_graph = vision_graph if vision_graph is not None else VisionGraph()
        self.bandit_solver = bandit_solver
        self.registration = registration
        self.comm: CommunicationPolicy | None = None
        self._agent_ref: weakref.ref[CameraAgent] | None = None

        self.auction_duration = settings.auction_duration
        self.search_timeout = settings.search_timeout
        self.passive_threshold = settings.passive_threshold
        self.vg_strengthen = settings.vg_strengthen
        self.vg_evaporation = settings.vg_evaporation

        self._owned: dict[tuple[float, ...], Target] = {}
        self._searched: dict[Target, str] = {}     # target -> auctioneer ("" = nobody)
        self._received_delay: dict[Target, int] = {}
        self._bid_for: set[Target] = set()
        self._auctions: dict[Target, int] = {}     # target -> ticks left
        self._bids: dict[Target, dict[str, float]] = {}
        self.advertised_objects: dict[Target, list[str]] = {}
        self.steps_till_broadcast: dict[Target, int] = {}

        self.received_utility = 0.0
        self.paid_utility = 0.0
        self.sent_messages = 0
        self.nr_of_bids = 0

    # -- Wiring ---------------------------------------------------------------

    def set_controller(self, agent: CameraAgent) -> None:
        self._agent_ref = weakref.ref(agent)

    @property
    def agent(self) -> CameraAgent:
        agent = self._agent_ref() if self._agent_ref is not None else None
        if agent is None:
            raise RuntimeError("DecisionNode is not attached to a camera")
        return agent

    def set_param(self, key: str, value: Any) -> bool:
        """Override a node-local tunable.  False if unknown or not castable."""
        cast = TUNABLE_PARAMS.get(key)
        if cast is None:
            return False
        try:
            setattr(self, key, cast(value))
        except (TypeError, ValueError):
            return False
        return True

    # -- Read-only views ----------------------------------------------------------

    @property
    def owned_objects(self) -> dict[tuple[float, ...], Target]:
        return self._owned

    @property
    def searched_objects(self) -> dict[Target, str]:
        return self._searched

    @property
    def open_auctions(self) -> dict[Target, int]:
        return dict(self._auctions)

    @property
    def utility(self) -> float:
        """Value of what this camera tracks: summed confidence of owned targets."""
        return self.total_confidence

    @property
    def total_confidence(self) -> float:
        agent = self.agent
        return sum(agent.confidence_for(t) for t in self._owned.values())

    @property
    def not_tracked_proportion(self) -> float:
        """Share of currently visible targets this camera does not own."""
        visible = self.agent.visible_objects
        if not visible:
            return 0.0
        untracked = sum(1 for t in visible if t.features not in self._owned)
        return untracked / len(visible)

    def increment_sent_messages(self) -> None:
        self.sent_messages += 1

    def reset_tick_counters(self) -> None:
        self.sent_messages = 0
        self.nr_of_bids = 0
        self.received_utility = 0.0
        self.paid_utility = 0.0

    # -- Ownership primitives -------------------------------------------------------

    def add_owned(self, target: Target) -> None:
        self._owned[target.features] = target
        self._forget_search(target)

    def add_searched(self, target: Target, auctioneer: str = "") -> None:
        if target.features in self._owned:
            return
        self._searched[target] = auctioneer
        self._received_delay[target] = 0

    def _forget_search(self, target: Target) -> None:
        self._searched.pop(target, None)
        self._received_delay.pop(target, None)
        self._bid_for.discard(target)

    def forget_object(self, features: tuple[float, ...]) -> None:
        """Drop every trace of a target that left the simulation."""
        target = self._owned.pop(features, None)
        for t in [t for t in self._searched if t.features == features]:
            self._forget_search(t)
        for store in (self._auctions, self._bids, self.advertised_objects,
                      self.steps_till_broadcast):
            for t in [t for t in store if t.features == features]:
                del store[t]
        if target is not None:
            logger.debug(f"{self.agent.camera_id}: forgot owned target {features}")

    # -- Messaging ------------------------------------------------------------

    def receive_message(self, msg: Message) -> Message | None:
        target = msg.target
        if target is None:
            return None

        if msg.msg_type == MessageType.START_SEARCH:
            self._on_start_search(msg.sender, target)
        elif msg.msg_type == MessageType.STOP_SEARCH:
            self._forget_search(target)
        elif msg.msg_type == MessageType.BID:
            if target in self._auctions and target.features in self._owned:
                self._bids.setdefault(target, {})[msg.sender] = msg.payload.value
        elif msg.msg_type == MessageType.START_TRACKING:
            price = msg.payload.value if isinstance(msg.payload, Bid) else 0.0
            self.add_owned(target)
            self.paid_utility += price
            logger.debug(f"{self.agent.camera_id}: took over {target.features} from {msg.sender}")
        return None

    def _on_start_search(self, sender: str, target: Target) -> None:
        if target.features in self._owned:
            if not sender:
                return
            # Two owners: yield to the advertiser and bid to win it back
            del self._owned[target.features]
            self._auctions.pop(target, None)
            self._bids.pop(target, None)
        # Every advertisement opens a new auction worth bidding in
        self._bid_for.discard(target)
        self.add_searched(target, sender)
        self._maybe_bid(target)

    def _maybe_bid(self, target: Target) -> None:
        auctioneer = self._searched.get(target)
        if not auctioneer or target in self._bid_for:
            return
        agent = self.agent
        confidence = agent.confidence_for(target)
        if confidence <= 0:
            return
        limit = agent.limit
        if limit > 0 and len(self._owned) >= limit:
            return
        self._bid_for.add(target)
        self.nr_of_bids += 1
        self.increment_sent_messages()
        agent.send_message(auctioneer, MessageType.BID, Bid(target, confidence))

    # -- Per-tick bookkeeping ------------------------------------------------------

    def advertise_tracked_objects(self) -> None:
        for target in list(self._owned.values()):
            if target in self._auctions or not self._should_advertise(target):
                continue
            self._auctions[target] = self.auction_duration
            self._bids[target] = {}
            self.comm.multicast(MessageType.START_SEARCH, target)

    def _should_advertise(self, target: Target) -> bool:
        raise NotImplementedError

    def update_received_delay(self) -> None:
        """Age searches; drop those whose auctioneer stopped advertising."""
        for target, auctioneer in list(self._searched.items()):
            if not auctioneer:
                continue
            self._received_delay[target] = self._received_delay.get(target, 0) + 1
            if self._received_delay[target] > self.search_timeout:
                logger.debug(f"{self.agent.camera_id}: search for {target.features} timed out")
                self._forget_search(target)

    def update_auction_duration(self) -> None:
        for target in list(self._auctions):
            self._auctions[target] -= 1

    def check_if_searched_is_visible(self) -> None:
        """Claim orphans in view; bid on searched targets that came into view."""
        agent = self.agent
        for target, auctioneer in list(self._searched.items()):
            if agent.confidence_for(target) <= 0:
                continue
            if auctioneer:
                self._maybe_bid(target)
                continue
            self.add_owned(target)
            logger.debug(f"{agent.camera_id}: claimed {target.features}")
            self.comm.broadcast(MessageType.STOP_SEARCH, target)

    def update(self) -> None:
        """Close due auctions, then decay the vision graph."""
        if self.settings.use_broadcast_as_failsafe and self.settings.failsafe_countdown == "tick":
            for target in self.steps_till_broadcast:
                self.steps_till_broadcast[target] -= 1

        for target in [t for t, left in self._auctions.items() if left <= 0]:
            self._close_auction(target)

        self.vision_graph.evaporate(self.vg_evaporation)

    def _close_auction(self, target: Target) -> None:
        bids = self._bids.pop(target, {})
        del self._auctions[target]
        if target.features not in self._owned or not bids:
            return

        agent = self.agent
        winner, price = max(bids.items(), key=lambda kv: (kv[1], kv[0]))
        if price <= agent.confidence_for(target):
            return

        reply = agent.send_message(winner, MessageType.START_TRACKING, Bid(target, price))
        if reply is not None and reply.msg_type == MessageType.ERROR_BAD_DESTINATION_ADDRESS:
            return

        self.increment_sent_messages()
        del self._owned[target.features]
        self.received_utility += price
        self.vision_graph.strengthen(winner, target, self.vg_strengthen)
        self.comm.multicast(MessageType.STOP_SEARCH, target)
        logger.debug(f"{agent.camera_id}: handed {target.features} to {winner} at {price:.3f}")

    # -- Hot-swap ---------------------------------------------------------------

    def clone_state_into(self, node: DecisionNode) -> DecisionNode:
        """Carry all auction and ownership state into *node* and return it."""
        node.random_gen = self.random_gen
        node.settings = self.settings
        node.vision_graph = self.vision_graph
        node.bandit_solver = self.bandit_solver
        node.registration = self.registration
        node._agent_ref = self._agent_ref
        for key in TUNABLE_PARAMS:
            setattr(node, key, getattr(self, key))

        node._owned = dict(self._owned)
        node._searched = dict(self._searched)
        node._received_delay = dict(self._received_delay)
        node._bid_for = set(self._bid_for)
        node._auctions = dict(self._auctions)
        node._bids = {t: dict(b) for t, b in self._bids.items()}
        node.advertised_objects = {t: list(n) for t, n in self.advertised_objects.items()}
        node.steps_till_broadcast = dict(self.steps_till_broadcast)

        node.received_utility = self.received_utility
        node.paid_utility = self.paid_utility
        node.sent_messages = self.sent_messages
        node.nr_of_bids = self.nr_of_bids
        return node

    def __repr__(self) -> str:
        comm = type(self.comm).__name__ if self.comm is not None else None
        return f"{type(self).__name__}(owned={len(self._owned)}, comm={comm})"


class ActiveAuctionNode(DecisionNode):
    kind = "active"

    def _should_advertise(self, target: Target) -> bool:
        return True


class PassiveAuctionNode(DecisionNode):
    kind = "passive"

    def _should_advertise(self, target: Target) -> bool:
        return self.agent.confidence_for(target) < self.passive_threshold


NODE_KINDS: dict[str, type[DecisionNode]] = {
    ActiveAuctionNode.kind: ActiveAuctionNode,
    PassiveAuctionNode.kind: PassiveAuctionNode,
}
