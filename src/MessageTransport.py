"""
MessageTransport - Common interface for messaging platform transports.

The dispatcher never talks to a platform directly. It calls a MessageTransport,
which performs a single attempt of each operation and reports failures as
DeliveryError with a DeliveryFailure kind.

Current Implementations:
    - TelegramTransport
"""
import math
from abc import ABC as AbstractBaseClass, abstractmethod
from typing import Optional
from DeliveryFailure import DeliveryError, DeliveryFailure
from PendingSend import SentMessage, Destination
from SendOptions import SendOptions
from LoggerSetup import setup_logger

_logger = setup_logger(__name__)


class MessageTransport(AbstractBaseClass):
    """Abstract base class for transports.

    Subclasses implement the three platform operations and must not retry, sleep
    or queue on their own: pacing and recovery belong to the dispatcher.
    """

    async def start(self) -> None:
        """Connect to the platform. Transports without a connection keep the default."""
        pass

    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def deliver(self, destination: Destination, text: str, options: SendOptions) -> SentMessage:
        """Send a new message.

        Raises:
            DeliveryError: On any platform rejection
        """
        pass

    @abstractmethod
    async def edit_text(self, destination: Destination, message_id: int, text: str) -> SentMessage:
        """Replace the text of an existing message.

        Raises:
            DeliveryError: On any platform rejection
        """
        pass

    @abstractmethod
    async def delete_message(self, destination: Destination, message_id: int) -> None:
        """Delete an existing message.

        Raises:
            DeliveryError: On any platform rejection
        """
        pass

    @staticmethod
    def _parse_retry_after(value) -> Optional[float]:
        """Parse an advertised wait into seconds, or None if unusable."""
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
            return None
        return seconds

    def _rate_limited(self, error: BaseException, retry_after) -> DeliveryError:
        """Build a RATE_LIMITED DeliveryError from a platform error."""
        seconds = self._parse_retry_after(retry_after)
        _logger.warning(
            f"[{self.__class__.__name__}] Rate limited: retry_after={retry_after!r}"
            + ("" if seconds is not None else " (unparseable)")
        )
        return DeliveryError(DeliveryFailure.RATE_LIMITED, str(error), retry_after=seconds, cause=error)
