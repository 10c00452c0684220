"""
Pytest configuration and shared fixtures for Courier tests.

FakeTransport records every platform call (with a monotonic timestamp) into a shared
event log and replays scripted failures. RecordingSleep stands in for asyncio.sleep so
backoff and delete delays can be asserted without waiting for them.
"""
import asyncio
import sys
import os
import time
from collections import namedtuple
from unittest.mock import Mock
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from DeliveryFailure import DeliveryError
from MessageDispatcher import MessageDispatcher
from MessageTransport import MessageTransport
from PendingSend import SentMessage

Call = namedtuple('Call', 'op destination text options message_id at')


class FakeTransport(MessageTransport):
    """In-memory transport; failures are scripted per operation, in call order."""

    def __init__(self, events=None):
        self.events = events if events is not None else []
        self.calls = []
        self.deliver_effects = []
        self.edit_effects = []
        self.delete_effects = []
        self._next_id = 100

    def _record(self, call):
        self.calls.append(call)
        self.events.append((call.op, call))

    @staticmethod
    def _apply(effects):
        effect = effects.pop(0) if effects else None
        if isinstance(effect, BaseException):
            raise effect

    async def deliver(self, destination, text, options):
        self._record(Call('deliver', destination, text, options, None, time.monotonic()))
        self._apply(self.deliver_effects)
        self._next_id += 1
        return SentMessage(destination, self._next_id, text)

    async def edit_text(self, destination, message_id, text):
        self._record(Call('edit', destination, text, None, message_id, time.monotonic()))
        self._apply(self.edit_effects)
        return SentMessage(destination, message_id, text)

    async def delete_message(self, destination, message_id):
        self._record(Call('delete', destination, None, None, message_id, time.monotonic()))
        self._apply(self.delete_effects)

    def calls_for(self, op):
        return [c for c in self.calls if c.op == op]


class RecordingSleep:
    """Records requested durations into the event log and only yields control."""

    def __init__(self, events):
        self.events = events
        self.durations = []

    async def __call__(self, seconds):
        self.durations.append(seconds)
        self.events.append(('sleep', seconds))
        await asyncio.sleep(0)


def failure(kind, retry_after=None):
    """Build a DeliveryError of the given kind."""
    return DeliveryError(kind, f"scripted {kind.value}", retry_after=retry_after)


def run_dispatcher(dispatcher, scenario):
    """Run scenario(dispatcher) with the drain loop started, stopping it afterwards."""
    async def runner():
        dispatcher.start()
        try:
            return await scenario(dispatcher)
        finally:
            await dispatcher.stop()

    return asyncio.run(runner())


# Distinct values so tests can tell idle and spacing sleeps from backoff sleeps
IDLE = 0.25
SPACING = 1.5


@pytest.fixture
def events():
    return []


@pytest.fixture
def transport(events):
    return FakeTransport(events)


@pytest.fixture
def fake_sleep(events):
    return RecordingSleep(events)


@pytest.fixture
def mock_metrics():
    metrics = Mock()
    metrics.increment = Mock()
    return metrics


@pytest.fixture
def dispatcher(transport, fake_sleep, mock_metrics):
    """Dispatcher over FakeTransport whose sleeps are recorded, not waited."""
    return MessageDispatcher(
        transport,
        metrics=mock_metrics,
        idle_interval=IDLE,
        spacing_interval=SPACING,
        chunk_limit=4000,
        sleep=fake_sleep,
    )
