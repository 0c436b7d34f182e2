"""Messages exchanged between camera agents.

Delivery is a synchronous method call on the recipient's decision node
(or deferred through the sender's outbox when a comm delay is set).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .target import Target


class MessageType(str, Enum):
    START_SEARCH = "start_search"
    STOP_SEARCH = "stop_search"
    START_TRACKING = "start_tracking"
    BID = "bid"
    ERROR_BAD_DESTINATION_ADDRESS = "error_bad_destination_address"


@dataclass(frozen=True)
class Bid:
    """A bid for a target in an open auction."""

    target: Target
    value: float


@dataclass(frozen=True)
class Message:
    """Immutable message.  ``sender == ""`` marks a self-originated message."""

    sender: str
    recipient: str
    msg_type: MessageType
    payload: Union[Target, Bid, None] = None

    @property
    def target(self) -> Target | None:
        """The target this message is about, whatever the payload kind."""
        if isinstance(self.payload, Bid):
            return self.payload.target
        return self.payload
