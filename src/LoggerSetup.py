"""
LoggerSetup - Centralized logging configuration for Courier

Every module gets its logger through setup_logger(__name__) instead of calling
logging.basicConfig() so that formatting and levels stay consistent.

The log level is read from COURIER_LOG_LEVEL (default: INFO) on first configuration.
"""
import logging
import os
import sys


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds ANSI color codes to log levels."""

    COLORS = {
        'DEBUG': '\033[0;36m',      # Cyan
        'INFO': '\033[0;37m',       # White
        'WARNING': '\033[0;33m',    # Yellow
        'ERROR': '\033[0;31m',      # Red
        'CRITICAL': '\033[1;31m',   # Bold Red
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, use_color=None):
        """Initialize colored formatter.

        Args:
            fmt: Log format string
            datefmt: Date format string
            use_color: Whether to use ANSI color codes (auto-detected if None)
        """
        super().__init__(fmt, datefmt)
        if use_color is None:
            use_color = hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()
        self.use_color = use_color

    def format(self, record):
        """Format log record, coloring the level name when enabled."""
        if self.use_color and record.levelname in self.COLORS:
            # Work on a copy so other handlers don't receive the escape codes
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = self.COLORS[record.levelname] + record.levelname + self.RESET

        return super().format(record)


def _level_from_env() -> int:
    name = os.getenv('COURIER_LOG_LEVEL', 'INFO').upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str, use_color=None) -> logging.Logger:
    """Get logger with consistent formatting and colored output.

    Configures the root logger on the first call only; safe to call from every module.

    Args:
        name: Logger name (__name__ from calling module)
        use_color: Whether to use colored output (auto-detected if None)

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logger(__name__)
        >>> logger.warning("Yellow warning")
    """
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = ColoredFormatter(
            fmt='%(asctime)s - %(levelname)s - [%(name)s] %(message)s',
            use_color=use_color
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
        root_logger.setLevel(_level_from_env())

    return logging.getLogger(name)


def preview(text: str, length: int = 20) -> str:
    """Shorten text for log lines: first `length` chars, newlines escaped."""
    short = text[:length] + "..." if len(text) > length else text
    return short.replace("\n", "\\n")
