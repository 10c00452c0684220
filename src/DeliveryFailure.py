"""
DeliveryFailure - Structured failure taxonomy for outbound deliveries.

Transports classify every platform error into a DeliveryFailure kind and raise it
as DeliveryError, so the dispatcher switches on a typed value instead of
pattern-matching error text.
"""
from enum import Enum
from typing import Optional


class DeliveryFailure(Enum):
    """Kind of a failed delivery.

    Attributes:
        RATE_LIMITED: Platform asked us to wait retry_after seconds
        REPLY_TARGET_MISSING: The message being replied to no longer exists
        FORMATTING_REJECTED: The platform could not parse the markup
        MESSAGE_MISSING: Edit/delete target is gone or not ours to change
        OTHER: Anything else
    """
    RATE_LIMITED = "rate_limited"
    REPLY_TARGET_MISSING = "reply_target_missing"
    FORMATTING_REJECTED = "formatting_rejected"
    MESSAGE_MISSING = "message_missing"
    OTHER = "other"


class DeliveryError(Exception):
    """Raised by transports when the platform rejects an operation.

    Attributes:
        kind: DeliveryFailure classification
        retry_after: Advertised wait in seconds (RATE_LIMITED only, None if unparseable)
        cause: Original platform exception, if any
    """

    def __init__(self, kind: DeliveryFailure, message: str = "",
                 retry_after: Optional[float] = None, cause: Optional[BaseException] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.retry_after = retry_after
        self.cause = cause

    def __repr__(self):
        extra = f", retry_after={self.retry_after}" if self.retry_after is not None else ""
        return f"DeliveryError({self.kind.name}{extra}: {self})"


class DispatcherStoppedError(DeliveryError):
    """Outcome of a message that was still queued when the dispatcher stopped."""

    def __init__(self, message: str = "dispatcher stopped before delivery"):
        super().__init__(DeliveryFailure.OTHER, message)
