"""
DispatchQueue - In-memory FIFO of pending deliveries.

The queue is the only shared mutable structure of the dispatcher. Producers append
through enqueue(); only the drain loop removes, through dequeue_head(). Neither
operation awaits, so each is indivisible on the event loop.
"""
from collections import deque
from itertools import count
from typing import Deque, List, Optional
from LoggerSetup import setup_logger, preview
from PendingSend import PendingSend

_logger = setup_logger(__name__)


class DispatchQueue:
    """Strict FIFO of PendingSend entries."""

    def __init__(self):
        self._queue: Deque[PendingSend] = deque()
        self._sequence = count(1)

    def next_sequence(self) -> int:
        """Next enqueue sequence number (monotonically increasing)."""
        return next(self._sequence)

    def enqueue(self, entry: PendingSend) -> None:
        """Append entry to the tail."""
        self._queue.append(entry)
        _logger.debug(
            f"Enqueued #{entry.sequence} {entry.action} to {entry.destination}: "
            f"{preview(entry.body)} (queue size: {len(self._queue)})"
        )

    def dequeue_head(self) -> Optional[PendingSend]:
        """Remove and return the oldest entry, or None when the queue is empty."""
        if not self._queue:
            return None
        return self._queue.popleft()

    def get_queue_size(self) -> int:
        return len(self._queue)

    def drain_all(self) -> List[PendingSend]:
        """Remove every entry, oldest first. Used on shutdown."""
        entries = list(self._queue)
        self._queue.clear()
        if entries:
            _logger.info(f"Drained {len(entries)} entries from dispatch queue")
        return entries
