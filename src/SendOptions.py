"""
SendOptions - Delivery options understood by the dispatcher.

Options travel with every queued message. Each message carries two sets:
the primary options the producer asked for, and fallback options derived from
them which are used when the platform rejects the primary attempt.

Fallback rules:
    - suppress_notification is preserved
    - RICH formatting is demoted to SAFE, other modes are kept
    - the reply reference is dropped
"""
from dataclasses import dataclass, replace, fields
from enum import Enum
from typing import Optional, Mapping, Any, Union


class FormattingMode(Enum):
    """Markup dialect requested for a message.

    Attributes:
        NONE: Plain text, no markup parsing
        SAFE: Reduced-risk dialect the platform is not expected to reject
        RICH: Full markup (fences, links, emphasis)
    """
    NONE = "none"
    SAFE = "safe"
    RICH = "rich"

    @classmethod
    def parse(cls, value) -> 'FormattingMode':
        """Accept a FormattingMode, its value ('rich') or its name ('RICH')."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        text = str(value).strip()
        for mode in cls:
            if text.lower() == mode.value:
                return mode
        raise ValueError(f"Unknown formatting mode: {value!r}")


@dataclass(frozen=True)
class SendOptions:
    """Configuration bag for a single delivery.

    Attributes:
        suppress_notification: Deliver silently (default True)
        formatting_mode: Markup dialect for the text
        reply_target: Message id to reply to, or None
    """
    suppress_notification: bool = True
    formatting_mode: FormattingMode = FormattingMode.NONE
    reply_target: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SendOptions':
        """Build options from a plain mapping, rejecting unknown keys.

        Raises:
            ValueError: If the mapping contains unknown keys or an unknown formatting mode
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown send option(s): {', '.join(sorted(unknown))}")

        kwargs = dict(data)
        if 'formatting_mode' in kwargs:
            kwargs['formatting_mode'] = FormattingMode.parse(kwargs['formatting_mode'])
        if kwargs.get('reply_target') is not None:
            kwargs['reply_target'] = int(kwargs['reply_target'])
        if 'suppress_notification' in kwargs:
            kwargs['suppress_notification'] = bool(kwargs['suppress_notification'])
        return cls(**kwargs)

    @classmethod
    def coerce(cls, options: Union['SendOptions', Mapping[str, Any], None]) -> 'SendOptions':
        """Normalize None, a mapping or SendOptions into SendOptions (defaults fill gaps)."""
        if options is None:
            return DEFAULT_OPTIONS
        if isinstance(options, SendOptions):
            return options
        return cls.from_dict(options)

    def with_reply(self, message_id: int) -> 'SendOptions':
        return replace(self, reply_target=int(message_id))

    def without_reply(self) -> 'SendOptions':
        return replace(self, reply_target=None)

    def fallback(self) -> 'SendOptions':
        """Degraded options used when the primary attempt is rejected."""
        mode = self.formatting_mode
        if mode is FormattingMode.RICH:
            mode = FormattingMode.SAFE
        return SendOptions(
            suppress_notification=self.suppress_notification,
            formatting_mode=mode,
            reply_target=None,
        )


DEFAULT_OPTIONS = SendOptions()
