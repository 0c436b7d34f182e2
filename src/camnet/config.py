"""Configuration management using Pydantic settings."""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Simulation settings loaded from environment variables (CAMNET_*)."""

    model_config = SettingsConfigDict(
        env_prefix="CAMNET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # World bounds used when a scenario does not define its own
    min_x: float = -30.0
    max_x: float = 30.0
    min_y: float = -30.0
    max_y: float = 30.0

    # Failure injection
    cam_error_rate: int = -1          # percent per tick, -1 = never fail
    reset_rate: int = 50              # failed camera loses state if roll > reset_rate
    max_offline_duration: int = 10    # random outage lasts 1..max_offline_duration ticks

    # Messaging
    comm_delay: int = 0               # ticks between send and delivery, 0 = immediate

    # Bandit solver parameters
    epsilon: float = 0.1              # epsilon (greedy) or temperature (softmax)
    alpha: float = 0.5                # utility weight in the reward function
    beta: float = 0.5
    gamma: float = 0.0
    bandit_interval: int = 1
    select_interval: int = 0          # < 2 = select a new strategy every tick

    # Target movement override ("" = use each object's own movement)
    movement: str = ""

    # Zoom model: range is capped at 0.8 * max_visibility (None = off)
    max_visibility: Optional[float] = None

    # Broadcast fail-safe for threshold multicast
    use_broadcast_as_failsafe: bool = False
    steps_till_broadcast: int = 5
    failsafe_countdown: Literal["attempt", "tick"] = "attempt"

    # Auction behaviour of the decision nodes
    auction_duration: int = 2         # ticks an auction stays open for bids
    search_timeout: int = 10          # ticks a forwarded search is kept without refresh
    passive_threshold: float = 0.2    # passive nodes advertise below this confidence

    # Vision graph learning
    vg_strengthen: float = 1.0        # added to a link after a successful handover
    vg_evaporation: float = 0.995     # per-tick decay of dynamic links

    # Statistics
    all_statistics: bool = False      # also write one CSV per camera


settings = Settings()
