"""
MessageDispatcher - Rate-limited outbound message dispatcher

Producers (command handlers, CLI, ...) call send(), reply(), edit() or
reply_and_delete_after(). Every request becomes a PendingSend in the DispatchQueue
and the producer awaits its outcome. A single background task, the drain loop,
delivers entries one at a time through the MessageTransport.

Drain loop:
    Idle:      queue empty -> sleep IDLE_INTERVAL, check again
    Draining:  dequeue head -> attempt delivery inline -> sleep SPACING_INTERVAL
               (the spacing sleep happens whatever the outcome was)

Recovery per delivery (at most one re-attempt, except for rate limits):
    RATE_LIMITED(W)        sleep W (DEFAULT_RETRY_AFTER if unknown), re-attempt
                           with fallback options directly, not through the queue;
                           repeated rate limits sleep again, up to MAX_BACKOFFS
    REPLY_TARGET_MISSING   re-attempt at once without the reply reference
    anything else          re-attempt at once with fallback options

Oversized text is split by TextChunker; each chunk is delivered and settled before
the next is enqueued, so the chunks of one message reach the chat in order.
"""
import asyncio
from typing import Optional, Set
from DeliveryFailure import DeliveryError, DeliveryFailure, DispatcherStoppedError
from DispatchQueue import DispatchQueue
from LoggerSetup import setup_logger, preview
from MessageTransport import MessageTransport
from PendingSend import PendingSend, SentMessage, Destination, ACTION_SEND, ACTION_EDIT
from SendOptions import SendOptions, DEFAULT_OPTIONS
from TextChunker import FENCE, chunk_oversized

_logger = setup_logger(__name__)


class MessageDispatcher:
    """Serializes deliveries against the platform's rate limits.

    Attributes:
        IDLE_INTERVAL: Seconds to sleep when the queue is empty
        SPACING_INTERVAL: Seconds to sleep after every delivery attempt
        CHUNK_LIMIT: Max characters per delivered message before splitting
        DEFAULT_RETRY_AFTER: Backoff in seconds when a rate limit has no usable wait
        MAX_BACKOFFS: Consecutive rate-limit backoffs allowed for one entry
        transport: MessageTransport used for every platform call
        queue: DispatchQueue shared by producers and the drain loop
    """

    IDLE_INTERVAL = 0.5
    SPACING_INTERVAL = 2.0
    CHUNK_LIMIT = 4000
    DEFAULT_RETRY_AFTER = 5.0
    MAX_BACKOFFS = 5

    def __init__(self,
                 transport: MessageTransport,
                 queue: Optional[DispatchQueue] = None,
                 metrics=None,
                 idle_interval: Optional[float] = None,
                 spacing_interval: Optional[float] = None,
                 chunk_limit: Optional[int] = None,
                 default_retry_after: Optional[float] = None,
                 max_backoffs: Optional[int] = None,
                 sleep=None):
        """Initialize dispatcher with dependency injection support.

        Args:
            transport: MessageTransport performing single platform attempts
            queue: DispatchQueue instance (or None to create one)
            metrics: Optional MetricsCollector for delivery counters
            idle_interval, spacing_interval, chunk_limit, default_retry_after,
            max_backoffs: Overrides for the class defaults
            sleep: Coroutine function used for every wait (defaults to asyncio.sleep)

        Raises:
            ValueError: If a timing value is negative or chunk_limit is too small to split
        """
        self.transport = transport
        self.queue = queue or DispatchQueue()
        self._metrics = metrics
        self.idle_interval = self.IDLE_INTERVAL if idle_interval is None else idle_interval
        self.spacing_interval = self.SPACING_INTERVAL if spacing_interval is None else spacing_interval
        self.chunk_limit = self.CHUNK_LIMIT if chunk_limit is None else chunk_limit
        self.default_retry_after = self.DEFAULT_RETRY_AFTER if default_retry_after is None else default_retry_after
        self.max_backoffs = self.MAX_BACKOFFS if max_backoffs is None else max_backoffs
        self._sleep = sleep or asyncio.sleep

        if min(self.idle_interval, self.spacing_interval, self.default_retry_after) < 0:
            raise ValueError("dispatcher intervals must not be negative")
        # Each split must shrink the head, which needs room beyond the fence we may append
        if self.chunk_limit <= len(FENCE):
            raise ValueError(f"chunk_limit must be greater than {len(FENCE)}")
        if self.max_backoffs < 1:
            raise ValueError("max_backoffs must be at least 1")

        self._task: Optional[asyncio.Task] = None
        self._delete_tasks: Set[asyncio.Task] = set()
        self._closed = False

    @classmethod
    def from_config(cls, config, transport: MessageTransport, metrics=None) -> 'MessageDispatcher':
        """Build a dispatcher using the timing values of a ConfigManager."""
        return cls(
            transport,
            metrics=metrics,
            idle_interval=config.idle_interval,
            spacing_interval=config.spacing_interval,
            chunk_limit=config.chunk_limit,
            default_retry_after=config.default_retry_after,
            max_backoffs=config.max_backoffs,
        )

    def _count(self, metric_name: str) -> None:
        if self._metrics:
            self._metrics.increment(metric_name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Spawn the drain loop on the running event loop (no-op if already running)."""
        if not self.running:
            self._closed = False
            self._task = asyncio.create_task(self.process_queue())
        return self._task

    async def stop(self) -> None:
        """Stop the drain loop and fail everything that was not delivered.

        Pending scheduled deletes are cancelled. Entries still in the queue are
        rejected with DispatcherStoppedError so no producer waits forever.
        """
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._delete_tasks:
            _logger.warning(f"Cancelling {len(self._delete_tasks)} scheduled delete(s)")
            pending = list(self._delete_tasks)
            for delete_task in pending:
                delete_task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        leftover = self.queue.drain_all()
        if leftover:
            _logger.warning(f"Stopping with {len(leftover)} undelivered message(s) in queue (will be lost)")
        for entry in leftover:
            entry.fail(DispatcherStoppedError())

        _logger.info("Dispatcher stopped")

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    async def process_queue(self) -> None:
        """Background task delivering queued entries one at a time, forever."""
        _logger.info(
            f"Drain loop started (spacing={self.spacing_interval}s, idle={self.idle_interval}s)"
        )

        while True:
            entry = self.queue.dequeue_head()
            if entry is None:
                await self._sleep(self.idle_interval)
                continue

            try:
                if entry.action == ACTION_EDIT:
                    await self._edit_entry(entry)
                else:
                    await self._deliver_entry(entry)
            except asyncio.CancelledError:
                entry.fail(DispatcherStoppedError("dispatcher stopped during delivery"))
                raise
            except Exception as e:
                _logger.error(f"Unexpected error while delivering #{entry.sequence}: {e}", exc_info=True)
                self._count("messages_failed")
                entry.fail(e)

            await self._sleep(self.spacing_interval)

    async def _deliver_entry(self, entry: PendingSend) -> None:
        """Attempt a send entry with recovery and settle its outcome."""
        _logger.info(
            f"Sending #{entry.sequence} {preview(entry.body)} to chat {entry.destination} "
            f"(queued {entry.age():.1f}s)"
        )
        try:
            result = await self._deliver_with_recovery(entry)
        except DeliveryError as error:
            self._count("messages_failed")
            _logger.error(f"Delivery of #{entry.sequence} to {entry.destination} failed: {error!r}")
            entry.fail(error)
        else:
            self._count("messages_sent")
            entry.settle(result)

    async def _deliver_with_recovery(self, entry: PendingSend) -> SentMessage:
        try:
            return await self.transport.deliver(entry.destination, entry.body, entry.primary_options)
        except DeliveryError as error:
            first_error = error

        if first_error.kind is DeliveryFailure.RATE_LIMITED:
            return await self._backoff_and_redeliver(entry, first_error, entry.fallback_options)

        if first_error.kind is DeliveryFailure.REPLY_TARGET_MISSING:
            self._count("reply_target_missing")
            _logger.info(
                f"Reply target {entry.primary_options.reply_target} of #{entry.sequence} "
                f"is gone, sending without reply"
            )
            options = entry.primary_options.without_reply()
        else:
            self._count("fallback_attempts")
            _logger.warning(f"#{entry.sequence} rejected ({first_error.kind.name}), retrying with fallback options")
            options = entry.fallback_options

        try:
            return await self.transport.deliver(entry.destination, entry.body, options)
        except DeliveryError as error:
            if error.kind is DeliveryFailure.RATE_LIMITED:
                return await self._backoff_and_redeliver(entry, error, entry.fallback_options)
            raise

    async def _backoff_and_redeliver(self, entry: PendingSend, error: DeliveryError,
                                     options: SendOptions) -> SentMessage:
        """Honor the advertised wait, then re-attempt directly (bypassing the queue)."""
        backoffs = 0
        while True:
            backoffs += 1
            wait = error.retry_after if error.retry_after is not None else self.default_retry_after
            self._count("rate_limit_backoffs")
            _logger.warning(
                f"#{entry.sequence} rate limited, waiting {wait}s before retrying "
                f"({backoffs}/{self.max_backoffs})"
            )
            await self._sleep(wait)

            try:
                return await self.transport.deliver(entry.destination, entry.body, options)
            except DeliveryError as retry_error:
                if retry_error.kind is not DeliveryFailure.RATE_LIMITED or backoffs >= self.max_backoffs:
                    raise
                error = retry_error

    async def _edit_entry(self, entry: PendingSend) -> None:
        """Attempt an edit entry once; edits are never retried as edits."""
        _logger.info(f"Editing message {entry.message_id} of chat {entry.destination}")
        try:
            result = await self.transport.edit_text(entry.destination, entry.message_id, entry.body)
        except DeliveryError as error:
            _logger.info(f"Edit of message {entry.message_id} failed: {error!r}")
            entry.fail(error)
        else:
            self._count("edits_sent")
            entry.settle(result)

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def _enqueue(self, destination: Destination, body: str, options: SendOptions,
                 action: str = ACTION_SEND, message_id: Optional[int] = None) -> PendingSend:
        if self._closed:
            raise DispatcherStoppedError("dispatcher is stopped")

        entry = PendingSend(
            destination=destination,
            body=body,
            outcome=asyncio.get_running_loop().create_future(),
            sequence=self.queue.next_sequence(),
            primary_options=options,
            fallback_options=options.fallback(),
            action=action,
            message_id=message_id,
        )
        self.queue.enqueue(entry)
        self._count("messages_enqueued")
        return entry

    async def send(self, destination: Destination, text: str, options=None) -> SentMessage:
        """Queue text for delivery and wait for the outcome.

        Text longer than chunk_limit is split into chunks that are enqueued one at
        a time, each after the previous one settled. A failed chunk is raised and
        the chunks after it are not sent.

        Args:
            destination: Target chat
            text: Message body
            options: SendOptions, a mapping of option fields, or None for defaults

        Returns:
            SentMessage: Result of the last delivered chunk

        Raises:
            DeliveryError: If the delivery and its re-attempt failed
        """
        options = SendOptions.coerce(options)

        if len(text) <= self.chunk_limit:
            return await self._enqueue(destination, text, options).outcome

        chunks = chunk_oversized(text, self.chunk_limit)
        self._count("chunks_split")
        _logger.info(f"Splitting {len(text)} chars for chat {destination} into {len(chunks)} chunks")

        # Each chunk settles before the next is enqueued; a failure stops the rest
        result = None
        for chunk in chunks:
            result = await self._enqueue(destination, chunk, options).outcome
        return result

    async def reply(self, destination: Destination, target_message_id: int, text: str,
                    options=None) -> SentMessage:
        """Send text as a reply to target_message_id.

        If the reply cannot be delivered, the text is sent once more as a plain
        message with the caller's options minus the reply reference.
        """
        original = SendOptions.coerce(options)

        try:
            return await self.send(destination, text, original.with_reply(target_message_id))
        except DispatcherStoppedError:
            raise
        except DeliveryError as error:
            if error.kind is DeliveryFailure.REPLY_TARGET_MISSING:
                _logger.info(
                    f"Failed to reply to message {target_message_id} in chat {destination} "
                    f"because it has been deleted"
                )
            else:
                _logger.warning(f"Reply to message {target_message_id} failed: {error!r}")

        return await self.send(destination, text, original.without_reply())

    async def edit(self, destination: Destination, message_id: int, new_text: str) -> SentMessage:
        """Edit a message in place, or send new_text as a new message if that fails."""
        entry = self._enqueue(destination, new_text, DEFAULT_OPTIONS,
                              action=ACTION_EDIT, message_id=int(message_id))
        try:
            return await entry.outcome
        except DispatcherStoppedError:
            raise
        except DeliveryError as error:
            self._count("edits_fallback")
            _logger.info(f"Failed to edit message {message_id} due to {error.kind.name}, sending a new one")

        return await self.send(destination, new_text, DEFAULT_OPTIONS)

    async def reply_and_delete_after(self, destination: Destination, target_message_id: int,
                                     text: str, delay: float, options=None) -> None:
        """Reply, then delete the reply after `delay` seconds (best effort)."""
        sent = await self.reply(destination, target_message_id, text, options)
        self.delete_after(destination, sent.message_id, delay)

    def delete_after(self, destination: Destination, message_id: int, delay: float) -> asyncio.Task:
        """Schedule one delete attempt of message_id after `delay` seconds."""
        task = asyncio.create_task(self._delete_after(destination, message_id, delay))
        self._delete_tasks.add(task)
        task.add_done_callback(self._delete_tasks.discard)
        return task

    async def _delete_after(self, destination: Destination, message_id: int, delay: float) -> None:
        await self._sleep(delay)
        _logger.info(f"Deleting message {message_id} of chat {destination}")
        try:
            await self.transport.delete_message(destination, message_id)
        except Exception as e:
            # Already removed, permissions revoked, ...: never retried, never surfaced
            self._count("deletes_failed")
            _logger.warning(f"Failed to delete message {message_id} of chat {destination}: {e}")
        else:
            self._count("deletes_sent")
