"""
PendingSend - One unit of outbound work and the result of a delivery.

A PendingSend is created by the dispatcher for every chunk a producer sends (or every
edit it requests), appended to the DispatchQueue, removed by the drain loop, attempted,
and finally settled. Settling the outcome is the last thing that happens to an entry.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from SendOptions import SendOptions, DEFAULT_OPTIONS

ACTION_SEND = "send"
ACTION_EDIT = "edit"

Destination = Union[int, str]


@dataclass
class SentMessage:
    """Successful delivery as reported by a transport.

    Attributes:
        destination: Chat the message lives in
        message_id: Platform id of the delivered (or edited) message
        text: Text that was delivered
        raw: Platform-specific message object
    """
    destination: Destination
    message_id: int
    text: str = ""
    raw: Optional[Any] = None


@dataclass
class PendingSend:
    """Queued delivery awaiting the drain loop.

    Attributes:
        destination: Opaque identifier of the target chat
        body: Text payload, already chunked below the size limit
        primary_options: Options the producer asked for
        fallback_options: Degraded options for re-attempts
        outcome: Future resolved with a SentMessage or rejected with DeliveryError
        sequence: Enqueue counter, strictly increasing
        action: ACTION_SEND or ACTION_EDIT
        message_id: Target message for edits
        created_at: Unix timestamp of creation
    """
    destination: Destination
    body: str
    outcome: asyncio.Future
    sequence: int
    primary_options: SendOptions = DEFAULT_OPTIONS
    fallback_options: SendOptions = DEFAULT_OPTIONS
    action: str = ACTION_SEND
    message_id: Optional[int] = None
    created_at: float = field(default_factory=time.time)

    def age(self) -> float:
        """Seconds since the entry was created."""
        return time.time() - self.created_at

    def settle(self, result: SentMessage) -> bool:
        """Resolve the outcome. Returns False if it was already settled or cancelled."""
        if self.outcome.done():
            return False
        self.outcome.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        """Reject the outcome. Returns False if it was already settled or cancelled."""
        if self.outcome.done():
            return False
        self.outcome.set_exception(error)
        return True
