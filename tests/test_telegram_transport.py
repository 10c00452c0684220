"""Test TelegramTransport - Telethon calls and error classification."""
import sys
import os
import asyncio
from pathlib import Path
from unittest.mock import Mock, AsyncMock, patch
import pytest
from telethon.errors import FloodWaitError, RPCError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from DeliveryFailure import DeliveryError, DeliveryFailure
from SendOptions import SendOptions, FormattingMode
from TelegramTransport import TelegramTransport


@pytest.fixture
def mock_config():
    config = Mock()
    config.api_id = 123456
    config.api_hash = "test_hash"
    config.bot_token = "123:abc"
    config.session_path = Path("/tmp/test/config/courier_bot.session")
    return config


@pytest.fixture
def transport(mock_config):
    """TelegramTransport with a mocked Telethon client."""
    with patch('TelegramTransport.TelegramClient'):
        transport = TelegramTransport(mock_config)
    transport.client = Mock()
    transport.client.get_input_entity = AsyncMock(side_effect=lambda key: f"peer:{key}")
    transport.client.send_message = AsyncMock(return_value=Mock(id=555))
    transport.client.edit_message = AsyncMock(return_value=Mock(id=300))
    transport.client.delete_messages = AsyncMock(return_value=[Mock(pts_count=1)])
    return transport


def _rpc_error(message, code=400):
    return RPCError(request=Mock(), message=message, code=code)


@patch('TelegramTransport.TelegramClient')
def test_client_disables_builtin_flood_sleep(MockClient, mock_config):
    """Test Telethon never sleeps on flood waits by itself."""
    TelegramTransport(mock_config)

    _, kwargs = MockClient.call_args
    assert kwargs['flood_sleep_threshold'] == 0


def test_deliver_maps_options(transport):
    """Test reply reference, notification and formatting reach send_message."""
    options = SendOptions(suppress_notification=True, formatting_mode=FormattingMode.RICH, reply_target=42)

    sent = asyncio.run(transport.deliver(-100123, "```code```", options))

    assert sent.message_id == 555
    assert sent.destination == -100123
    transport.client.send_message.assert_called_once_with(
        "peer:-100123", "```code```", reply_to=42, parse_mode='md', silent=True
    )


@pytest.mark.parametrize("mode", [FormattingMode.NONE, FormattingMode.SAFE])
def test_plain_modes_disable_parsing(transport, mode):
    asyncio.run(transport.deliver(1, "*x*", SendOptions(formatting_mode=mode)))

    assert transport.client.send_message.call_args.kwargs['parse_mode'] is None


@pytest.mark.parametrize("spec, expected", [
    (-100123, -100123),
    ("-100123", -100123),
    ("42", 42),
    ("@plct", "@plct"),
    ("plct", "@plct"),
])
def test_normalize_destination(spec, expected):
    assert TelegramTransport._normalize_destination(spec) == expected


def test_peer_resolution_is_cached(transport):
    """Test the input entity is resolved once per destination."""
    async def scenario():
        await transport.deliver("@plct", "a", SendOptions())
        await transport.deliver("plct", "b", SendOptions())

    asyncio.run(scenario())

    transport.client.get_input_entity.assert_called_once_with("@plct")


def test_flood_wait_becomes_rate_limited(transport):
    """Test FloodWaitError carries its wait as retry_after."""
    flood_error = FloodWaitError(request=Mock())
    flood_error.seconds = 7
    transport.client.send_message = AsyncMock(side_effect=flood_error)

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(transport.deliver(1, "x", SendOptions()))

    assert exc_info.value.kind is DeliveryFailure.RATE_LIMITED
    assert exc_info.value.retry_after == 7.0
    assert exc_info.value.cause is flood_error


def test_unparseable_flood_wait_has_no_retry_after(transport):
    flood_error = FloodWaitError(request=Mock())
    flood_error.seconds = "soon"
    transport.client.send_message = AsyncMock(side_effect=flood_error)

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(transport.deliver(1, "x", SendOptions()))

    assert exc_info.value.kind is DeliveryFailure.RATE_LIMITED
    assert exc_info.value.retry_after is None


@pytest.mark.parametrize("rpc_message, kind", [
    ("REPLY_MESSAGE_ID_INVALID", DeliveryFailure.REPLY_TARGET_MISSING),
    ("REPLY_TO_INVALID", DeliveryFailure.REPLY_TARGET_MISSING),
    ("ENTITY_BOUNDS_INVALID", DeliveryFailure.FORMATTING_REJECTED),
    ("MESSAGE_EMPTY", DeliveryFailure.FORMATTING_REJECTED),
    ("MESSAGE_ID_INVALID", DeliveryFailure.MESSAGE_MISSING),
    ("CHAT_WRITE_FORBIDDEN", DeliveryFailure.OTHER),
])
def test_rpc_errors_are_classified(transport, rpc_message, kind):
    transport.client.send_message = AsyncMock(side_effect=_rpc_error(rpc_message))

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(transport.deliver(1, "x", SendOptions()))

    assert exc_info.value.kind is kind


def test_network_error_is_other(transport):
    transport.client.send_message = AsyncMock(side_effect=ConnectionError("reset"))

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(transport.deliver(1, "x", SendOptions()))

    assert exc_info.value.kind is DeliveryFailure.OTHER
    assert "ConnectionError" in str(exc_info.value)


def test_edit_text_uses_plain_text(transport):
    sent = asyncio.run(transport.edit_text(1, 300, "new text"))

    assert sent.message_id == 300
    transport.client.edit_message.assert_called_once_with("peer:1", 300, "new text", parse_mode=None)


def test_delete_message_revokes(transport):
    asyncio.run(transport.delete_message(1, 300))

    transport.client.delete_messages.assert_called_once_with("peer:1", [300], revoke=True)


def test_delete_of_unknown_message_raises_missing(transport):
    """Test a delete that affected nothing is reported as MESSAGE_MISSING."""
    transport.client.delete_messages = AsyncMock(return_value=[Mock(pts_count=0)])

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(transport.delete_message(1, 300))

    assert exc_info.value.kind is DeliveryFailure.MESSAGE_MISSING


def test_start_logs_in_as_bot(transport, mock_config):
    transport.client.start = AsyncMock()
    transport.client.get_me = AsyncMock(return_value=Mock(username="plct_bot"))

    asyncio.run(transport.start())

    transport.client.start.assert_called_once_with(bot_token="123:abc")


def test_disconnect_only_when_connected(transport):
    transport.client.is_connected = Mock(return_value=False)
    transport.client.disconnect = AsyncMock()

    asyncio.run(transport.disconnect())

    transport.client.disconnect.assert_not_called()
