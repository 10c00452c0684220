"""
TelegramTransport - Telegram delivery through the Telethon library

The bot logs in with a bot token over MTProto and performs exactly one attempt per
call. Telethon's own flood-wait sleeping is disabled (flood_sleep_threshold=0) so
every FloodWaitError reaches the dispatcher, which owns backoff and pacing.

Telegram API Details:
    - Message limit: 4096 characters (the dispatcher chunks at 4000)
    - Rate limiting via FloodWaitError with .seconds to wait
    - Other rejections are RPCError subclasses carrying the raw RPC message
      (e.g. REPLY_MESSAGE_ID_INVALID, ENTITY_BOUNDS_INVALID, MESSAGE_ID_INVALID)

Formatting:
    RICH -> Telethon markdown ('md'), which understands ``` fences
    SAFE -> plain text, nothing the platform can reject
    NONE -> plain text

Telethon ships a single markdown dialect and no reduced one, so SAFE is plain text
on Telegram on purpose: a fallback must not reuse the markup that was just rejected.
"""
from typing import Dict, Optional, Union
from telethon import TelegramClient
from telethon.errors import FloodWaitError, RPCError
from DeliveryFailure import DeliveryError, DeliveryFailure
from MessageTransport import MessageTransport
from PendingSend import SentMessage, Destination
from SendOptions import SendOptions, FormattingMode
from LoggerSetup import setup_logger, preview

_logger = setup_logger(__name__)

PARSE_MODES = {
    FormattingMode.NONE: None,
    FormattingMode.SAFE: None,
    FormattingMode.RICH: 'md',
}

_FORMATTING_ERRORS = {'ENTITY_BOUNDS_INVALID', 'ENTITIES_TOO_LONG', 'MESSAGE_EMPTY'}
_MISSING_MESSAGE_ERRORS = {'MESSAGE_ID_INVALID', 'MESSAGE_DELETE_FORBIDDEN', 'MESSAGE_AUTHOR_REQUIRED'}


class TelegramTransport(MessageTransport):
    """Telethon-backed MessageTransport.

    Attributes:
        client: Telethon TelegramClient instance
    """

    def __init__(self, config, client: Optional[TelegramClient] = None):
        """Create the transport and its Telethon client.

        Args:
            config: ConfigManager with api_id, api_hash, bot_token and session path
            client: Prebuilt TelegramClient (tests), or None to build one from config
        """
        self.config = config
        self.client = client or TelegramClient(
            str(config.session_path), config.api_id, config.api_hash,
            flood_sleep_threshold=0
        )
        # Destination cache: spec (@name or -100id) -> input peer
        self._peer_cache: Dict[Union[int, str], object] = {}

    async def start(self) -> None:
        """Connect and authenticate as the bot."""
        await self.client.start(bot_token=self.config.bot_token)
        me = await self.client.get_me()
        _logger.info(f"Telegram client started as @{getattr(me, 'username', None) or 'unknown'}")

    def is_connected(self) -> bool:
        return bool(self.client.is_connected())

    async def disconnect(self) -> None:
        if self.is_connected():
            await self.client.disconnect()
            _logger.info("Telegram client disconnected")

    @staticmethod
    def _normalize_destination(destination: Destination) -> Union[int, str]:
        """Turn a destination spec into something Telethon resolves.

        Examples:
            >>> TelegramTransport._normalize_destination('-100123')
            -100123
            >>> TelegramTransport._normalize_destination('plct_bot_test')
            '@plct_bot_test'
        """
        if isinstance(destination, int):
            return destination
        spec = str(destination).strip()
        if spec.startswith('@'):
            return spec
        if spec.lstrip('-').isdigit():
            return int(spec)
        return f"@{spec}"

    async def _resolve_peer(self, destination: Destination):
        key = self._normalize_destination(destination)
        if key not in self._peer_cache:
            self._peer_cache[key] = await self.client.get_input_entity(key)
        return self._peer_cache[key]

    def _classify(self, error: Exception) -> DeliveryError:
        """Map a Telethon exception onto the DeliveryFailure taxonomy."""
        if isinstance(error, DeliveryError):
            return error
        if isinstance(error, FloodWaitError):
            return self._rate_limited(error, getattr(error, 'seconds', None))
        if isinstance(error, RPCError):
            rpc_message = (getattr(error, 'message', '') or '').upper()
            if rpc_message.startswith('REPLY_'):
                kind = DeliveryFailure.REPLY_TARGET_MISSING
            elif rpc_message in _FORMATTING_ERRORS:
                kind = DeliveryFailure.FORMATTING_REJECTED
            elif rpc_message in _MISSING_MESSAGE_ERRORS:
                kind = DeliveryFailure.MESSAGE_MISSING
            else:
                kind = DeliveryFailure.OTHER
            return DeliveryError(kind, f"{rpc_message or type(error).__name__}: {error}", cause=error)
        return DeliveryError(DeliveryFailure.OTHER, f"{type(error).__name__}: {error}", cause=error)

    async def deliver(self, destination: Destination, text: str, options: SendOptions) -> SentMessage:
        _logger.debug(f"Sending {preview(text)} to {destination} with {options}")
        try:
            peer = await self._resolve_peer(destination)
            message = await self.client.send_message(
                peer, text,
                reply_to=options.reply_target,
                parse_mode=PARSE_MODES[options.formatting_mode],
                silent=options.suppress_notification,
            )
        except Exception as e:
            raise self._classify(e) from e
        return SentMessage(destination, message.id, text, message)

    async def edit_text(self, destination: Destination, message_id: int, text: str) -> SentMessage:
        try:
            peer = await self._resolve_peer(destination)
            message = await self.client.edit_message(peer, int(message_id), text, parse_mode=None)
        except Exception as e:
            raise self._classify(e) from e
        return SentMessage(destination, getattr(message, 'id', int(message_id)), text, message)

    async def delete_message(self, destination: Destination, message_id: int) -> None:
        try:
            peer = await self._resolve_peer(destination)
            affected = await self.client.delete_messages(peer, [int(message_id)], revoke=True)
        except Exception as e:
            raise self._classify(e) from e

        # Telegram reports nothing deleted instead of raising for unknown ids
        if affected is not None and not any(getattr(a, 'pts_count', 1) for a in affected):
            raise DeliveryError(
                DeliveryFailure.MESSAGE_MISSING,
                f"message {message_id} in {destination} was not deleted"
            )
