"""
Courier - Application wiring and command line interface for the dispatcher

Courier connects the Telegram transport, starts the dispatcher's drain loop and
exposes the dispatcher operations on the command line, mainly for operators who
need to post or clean up bot messages by hand.

Subcommands:
    send:       Send text to a chat (text from --text or stdin)
    reply:      Reply to a message, falling back to a plain message
    edit:       Edit a bot message, falling back to a new message
    ephemeral:  Reply and delete the reply after --delay seconds
"""
from __future__ import annotations
import argparse
import asyncio
import json
import sys
import time
from typing import Optional, TYPE_CHECKING
from LoggerSetup import setup_logger
from SendOptions import SendOptions, FormattingMode

if TYPE_CHECKING:
    from PendingSend import SentMessage

_logger = setup_logger(__name__)


class Courier:
    """Application orchestrator.

    Attributes:
        config: ConfigManager with credentials and dispatcher settings
        metrics: MetricsCollector for delivery counters
        transport: MessageTransport (TelegramTransport by default)
        dispatcher: MessageDispatcher serving all producers
    """

    def __init__(self, config=None, transport=None, dispatcher=None, metrics=None):
        """Initialize Courier with dependency injection support.

        Args:
            config: ConfigManager instance (or None to create default)
            transport: MessageTransport instance (or None for TelegramTransport)
            dispatcher: MessageDispatcher instance (or None to build from config)
            metrics: MetricsCollector instance (or None to create default)
        """
        # Lazy imports so tests can inject fakes without loading Telethon
        from ConfigManager import ConfigManager
        from MetricsCollector import MetricsCollector
        from MessageDispatcher import MessageDispatcher

        self.config = config or ConfigManager()
        self.metrics = metrics or MetricsCollector(self.config.tmp_dir / "metrics.json")
        if transport is None:
            from TelegramTransport import TelegramTransport
            transport = TelegramTransport(self.config)
        self.transport = transport
        self.dispatcher = dispatcher or MessageDispatcher.from_config(self.config, self.transport, self.metrics)
        self._start_time = None

        _logger.info("Initialized")

    async def start(self) -> None:
        """Connect the transport and start the drain loop."""
        self._start_time = time.time()
        await self.transport.start()
        self.dispatcher.start()

    async def shutdown(self) -> None:
        """Stop dispatching, persist metrics and disconnect."""
        _logger.info("Initiating graceful shutdown...")

        await self.dispatcher.stop()

        if self._start_time is not None:
            self.metrics.set("seconds_ran", int(time.time() - self._start_time))
        self.metrics.force_save()

        metrics_summary = self.metrics.get_all()
        if metrics_summary:
            _logger.info(f"Final metrics for this session:\n{json.dumps(metrics_summary, indent=2)}")

        await self.transport.disconnect()
        _logger.info("Shutdown complete")


def _options_from_args(args) -> SendOptions:
    return SendOptions(
        suppress_notification=not args.notify,
        formatting_mode=FormattingMode.parse(args.mode),
    )


def _read_text(args) -> str:
    if args.text is not None:
        return args.text
    text = sys.stdin.read()
    if not text.strip():
        raise ValueError("no text given (use --text or pipe text on stdin)")
    return text


async def run_command(app: Courier, args) -> Optional[SentMessage]:
    """Start the app, perform one CLI command through the dispatcher, shut down."""
    try:
        await app.start()
        dispatcher = app.dispatcher
        if args.cmd == "send":
            return await dispatcher.send(args.chat, _read_text(args), _options_from_args(args))
        if args.cmd == "reply":
            return await dispatcher.reply(args.chat, args.to, _read_text(args), _options_from_args(args))
        if args.cmd == "edit":
            return await dispatcher.edit(args.chat, args.message, _read_text(args))
        if args.cmd == "ephemeral":
            sent = await dispatcher.reply(args.chat, args.to, _read_text(args), _options_from_args(args))
            # Stay alive until the delete has been attempted
            await dispatcher.delete_after(args.chat, sent.message_id, args.delay)
            return sent
        raise ValueError(f"unknown command: {args.cmd}")
    finally:
        await app.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Courier - rate-limited Telegram message dispatcher")
    subparsers = parser.add_subparsers(dest="cmd")

    def add_common(sub, with_options=True):
        sub.add_argument("--chat", required=True, help="Chat id, -100... id or @username")
        sub.add_argument("--text", help="Message text (default: read stdin)")
        if with_options:
            sub.add_argument("--mode", default="none", choices=[m.value for m in FormattingMode],
                             help="Formatting mode (default: none)")
            sub.add_argument("--notify", action="store_true", help="Deliver with a notification")

    add_common(subparsers.add_parser("send", help="Send a message"))

    reply_parser = subparsers.add_parser("reply", help="Reply to a message")
    add_common(reply_parser)
    reply_parser.add_argument("--to", required=True, type=int, help="Message id to reply to")

    edit_parser = subparsers.add_parser("edit", help="Edit a message sent by the bot")
    add_common(edit_parser, with_options=False)
    edit_parser.add_argument("--message", required=True, type=int, help="Message id to edit")

    ephemeral_parser = subparsers.add_parser("ephemeral", help="Reply and delete the reply later")
    add_common(ephemeral_parser)
    ephemeral_parser.add_argument("--to", required=True, type=int, help="Message id to reply to")
    ephemeral_parser.add_argument("--delay", type=float, default=30.0,
                                  help="Seconds before the reply is deleted (default: 30)")

    return parser


def main(argv=None):
    """Main entry point for the Courier CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    try:
        app = Courier()
        sent = asyncio.run(run_command(app, args))
        if sent is not None:
            print(sent.message_id)
    except KeyboardInterrupt:
        _logger.info("Interrupted by user (Ctrl+C)")
    except Exception as e:
        _logger.error(f"Error: {e}")
        raise


if __name__ == "__main__":
    main()
