"""Simulation subsystem -- camera agents, communication policies, tick engine."""
from .bandit import BANDITS, EpsilonGreedy, Softmax, StrategySelector
from .camera import OFFLINE_NAME, CameraAgent, OnlineState, Resources
from .comms import Broadcast, CommunicationPolicy, Fix, Smooth, ThresholdMulticast, default_adjust_threshold
from .decision import ActiveAuctionNode, DecisionNode, PassiveAuctionNode
from .engine import SimulationEngine
from .exceptions import CamnetError, ConfigurationError, ConsistencyViolation, StatisticsIOError
from .messages import Bid, Message, MessageType
from .movement import Brownian, MovementStrategy, Straight, Waypoints, WorldBounds, create_movement
from .overlap import calculate_overlap, circle_overlap, network_overlap
from .random_streams import RandomStreamSet, RandomUse
from .registration import GlobalRegistration
from .registry import STRATEGY_TABLE, strategy_for, strategy_index_for
from .scenario import Scenario, load_scenario, save_scenario
from .stats import Statistics
from .target import Target
from .vision_graph import VisionGraph

__all__ = [
    "ActiveAuctionNode",
    "BANDITS",
    "Bid",
    "Broadcast",
    "Brownian",
    "CamnetError",
    "CameraAgent",
    "CommunicationPolicy",
    "ConfigurationError",
    "ConsistencyViolation",
    "DecisionNode",
    "EpsilonGreedy",
    "Fix",
    "GlobalRegistration",
    "Message",
    "MessageType",
    "MovementStrategy",
    "OFFLINE_NAME",
    "OnlineState",
    "PassiveAuctionNode",
    "RandomStreamSet",
    "RandomUse",
    "Resources",
    "STRATEGY_TABLE",
    "Scenario",
    "SimulationEngine",
    "Smooth",
    "Softmax",
    "Statistics",
    "StatisticsIOError",
    "StrategySelector",
    "Straight",
    "Target",
    "ThresholdMulticast",
    "VisionGraph",
    "Waypoints",
    "WorldBounds",
    "calculate_overlap",
    "circle_overlap",
    "create_movement",
    "default_adjust_threshold",
    "load_scenario",
    "network_overlap",
    "save_scenario",
    "strategy_for",
    "strategy_index_for",
]
