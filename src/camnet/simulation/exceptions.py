"""Error taxonomy for the camera network simulation.

Routing failures are not exceptions: a message that cannot be delivered
comes back to the sender as an ``ERROR_BAD_DESTINATION_ADDRESS`` message.
"""

from __future__ import annotations


class CamnetError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(CamnetError):
    """Scenario or parameter problem detected before the first tick.

    Raised for start coordinates outside the world bounds, unknown
    strategy / policy / movement / bandit identifiers, malformed scenario
    or parameter files, and parameters a decision node refuses.
    """


class ConsistencyViolation(CamnetError):
    """Ownership audit failed.  Carries the list of detected problems."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "inconsistent ownership state")


class StatisticsIOError(CamnetError):
    """The statistics sink could not be written."""
