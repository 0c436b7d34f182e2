"""Identifier -> factory lookups for everything built by name.

Scenario files and the strategy table refer to decision nodes,
communication policies and bandit solvers by identifier.  Every lookup
here raises ConfigurationError for an unknown identifier, so a bad
scenario fails before the first tick.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .bandit import BANDITS, StrategySelector
from .comms import COMM_POLICIES, COMM_POLICY_NAMES, CUSTOM_COMM, CommunicationPolicy
from .decision import NODE_KINDS, DecisionNode
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .camera import CameraAgent

# strategy index -> (node kind, communication policy index)
STRATEGY_TABLE: dict[int, tuple[str, int]] = {
    0: ("active", 0),   # broadcast
    1: ("active", 1),   # smooth
    2: ("active", 2),   # step
    3: ("passive", 0),
    4: ("passive", 1),
    5: ("passive", 2),
}

# Legacy class names accepted in scenario files
_NODE_ALIASES = {
    "activeauctionschedule": "active",
    "active_auction": "active",
    "passiveauctionschedule": "passive",
    "passive_auction": "passive",
}


def node_class(kind: str) -> type[DecisionNode]:
    key = kind.strip().lower()
    key = _NODE_ALIASES.get(key, key)
    cls = NODE_KINDS.get(key)
    if cls is None:
        raise ConfigurationError(
            f"Unknown decision node '{kind}' (known: {', '.join(sorted(NODE_KINDS))})"
        )
    return cls


def policy_class(comm: int, custom_comm: str | None = None) -> type[CommunicationPolicy]:
    """Resolve a policy from its index, or from *custom_comm* when comm == 4."""
    if comm == CUSTOM_COMM:
        cls = COMM_POLICY_NAMES.get((custom_comm or "").strip().lower())
        if cls is None:
            raise ConfigurationError(
                f"Unknown custom communication policy '{custom_comm}' "
                f"(known: {', '.join(sorted(COMM_POLICY_NAMES))})"
            )
        return cls
    cls = COMM_POLICIES.get(comm)
    if cls is None:
        raise ConfigurationError(f"Unknown communication policy index {comm}")
    return cls


def bandit_class(name: str) -> type[StrategySelector]:
    cls = BANDITS.get(name.strip().lower())
    if cls is None:
        raise ConfigurationError(
            f"Unknown bandit solver '{name}' (known: {', '.join(sorted(BANDITS))})"
        )
    return cls


def create_policy(comm: int, node: DecisionNode, agent: CameraAgent,
                  custom_comm: str | None = None) -> CommunicationPolicy:
    """Build a policy and install it on *node*."""
    policy = policy_class(comm, custom_comm)(node, agent)
    node.comm = policy
    return policy


def strategy_for(index: int) -> tuple[type[DecisionNode], type[CommunicationPolicy]]:
    entry = STRATEGY_TABLE.get(index)
    if entry is None:
        raise ConfigurationError(f"Strategy index {index} outside 0..{len(STRATEGY_TABLE) - 1}")
    kind, comm = entry
    return node_class(kind), policy_class(comm)


def strategy_index_for(node: DecisionNode) -> int:
    """Table index of the node's current (kind, policy), or -1 if not in the table."""
    comm = node.comm.index if node.comm is not None else -1
    for index, entry in STRATEGY_TABLE.items():
        if entry == (node.kind, comm):
            return index
    return -1
