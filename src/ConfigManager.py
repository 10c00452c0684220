"""
ConfigManager - Configuration loading and validation

Configuration comes from environment variables, optionally loaded from an .env file
(config/.env by default, or the path in COURIER_ENV_FILE). Variables already set in the
environment win over the file.

Configuration Structure:
    config/
    ├── .env                    # Environment variables
    └── courier_bot.session     # Telethon session (created on first login)

Environment variables:
    TELEGRAM_API_ID, TELEGRAM_API_HASH, TELEGRAM_BOT_TOKEN   Telegram credentials
    COURIER_SESSION_NAME          Session file name (default: courier_bot)
    COURIER_IDLE_INTERVAL         Seconds between checks of an empty queue (default: 0.5)
    COURIER_SPACING_INTERVAL      Seconds between delivery attempts (default: 2.0)
    COURIER_CHUNK_LIMIT           Characters per message before splitting (default: 4000)
    COURIER_DEFAULT_RETRY_AFTER   Backoff when a rate limit has no usable wait (default: 5)
    COURIER_MAX_BACKOFFS          Consecutive rate-limit backoffs per message (default: 5)
"""
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from LoggerSetup import setup_logger

_logger = setup_logger(__name__)


class ConfigManager:
    """Loads and validates Courier configuration from the environment.

    Attributes:
        api_id, api_hash, bot_token: Telegram credentials
        session_path: Telethon session file path
        idle_interval, spacing_interval, chunk_limit, default_retry_after, max_backoffs:
            Dispatcher timing and sizing
        tmp_dir: Working directory for metrics
    """

    def __init__(self, require_credentials: bool = True, env_path: Optional[Path] = None):
        """Load .env and read configuration.

        Args:
            require_credentials: If True (default), Telegram credentials must be present.
                                 If False, only dispatcher settings are validated.
            env_path: Explicit .env path (overrides COURIER_ENV_FILE and config/.env)

        Raises:
            ValueError: If required variables are missing or a value is invalid
        """
        self.project_root = Path(__file__).resolve().parents[1]
        self.config_dir = self.project_root / "config"

        self.env_path = Path(env_path or os.getenv('COURIER_ENV_FILE') or self.config_dir / ".env")
        load_dotenv(dotenv_path=self.env_path)

        self.api_id = os.getenv('TELEGRAM_API_ID')
        self.api_hash = os.getenv('TELEGRAM_API_HASH')
        self.bot_token = os.getenv('TELEGRAM_BOT_TOKEN')
        self.session_name = os.getenv('COURIER_SESSION_NAME', 'courier_bot')
        self.session_path = self.config_dir / f"{self.session_name}.session"

        self.idle_interval = self._read_float('COURIER_IDLE_INTERVAL', 0.5)
        self.spacing_interval = self._read_float('COURIER_SPACING_INTERVAL', 2.0)
        self.default_retry_after = self._read_float('COURIER_DEFAULT_RETRY_AFTER', 5.0)
        self.chunk_limit = self._read_int('COURIER_CHUNK_LIMIT', 4000, minimum=4)
        self.max_backoffs = self._read_int('COURIER_MAX_BACKOFFS', 5, minimum=1)

        self.tmp_dir = self.project_root / "tmp"
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

        if require_credentials:
            self._validate_credentials()
            _logger.info(f"Loaded configuration (session={self.session_name})")
        else:
            _logger.info("Initialized in minimal mode (no Telegram credentials required)")

    def _validate_credentials(self) -> None:
        """Ensure Telegram credentials exist and api_id is numeric.

        Raises:
            ValueError: Naming every missing variable
        """
        missing = [name for name, value in (
            ('TELEGRAM_API_ID', self.api_id),
            ('TELEGRAM_API_HASH', self.api_hash),
            ('TELEGRAM_BOT_TOKEN', self.bot_token),
        ) if not value]
        if missing:
            raise ValueError(f"Missing required environment variable(s): {', '.join(missing)}")

        try:
            self.api_id = int(self.api_id)
        except ValueError:
            raise ValueError(f"TELEGRAM_API_ID must be an integer, got {self.api_id!r}")

    @staticmethod
    def _read_float(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or raw.strip() == '':
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ValueError(f"{name} must be a number, got {raw!r}")
        if value < 0:
            raise ValueError(f"{name} must not be negative, got {value}")
        return value

    @staticmethod
    def _read_int(name: str, default: int, minimum: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == '':
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {raw!r}")
        if value < minimum:
            raise ValueError(f"{name} must be at least {minimum}, got {value}")
        return value
