"""
MetricsCollector - JSON-based delivery counters

Counters are kept in memory, saved to a JSON file at most every SAVE_INTERVAL
seconds while they change, and once more on shutdown. They reset on every start.

Metrics include:
  messages_enqueued
  messages_sent
  messages_failed
  chunks_split
  rate_limit_backoffs
  reply_target_missing
  fallback_attempts
  edits_sent
  edits_fallback
  deletes_sent
  deletes_failed
  seconds_ran
"""
import json
import time
from pathlib import Path
from typing import Dict
from collections import defaultdict
from LoggerSetup import setup_logger

_logger = setup_logger(__name__)


class MetricsCollector:
    """Metrics collector using JSON file storage with periodic saves.

    Attributes:
        SAVE_INTERVAL: Seconds between automatic saves (default: 60)
        metrics_file: Path to metrics JSON file
        metrics: Dictionary of metric names to values
    """

    SAVE_INTERVAL = 60  # seconds

    def __init__(self, metrics_file: Path):
        """Initialize with fresh counters; an existing metrics file is not loaded.

        Args:
            metrics_file: Path to metrics JSON file (e.g., tmp/metrics.json)
        """
        self.metrics_file = metrics_file
        self.metrics: Dict[str, int] = defaultdict(int)
        self._last_save_time = time.time()
        self._dirty = False
        _logger.info("[MetricsCollector] Starting with fresh metrics")

    def _save_metrics(self) -> None:
        """Write metrics to file now. Errors are logged, never raised."""
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.metrics_file, 'w') as f:
                json.dump(dict(self.metrics), f, indent=2)
            _logger.debug(f"[MetricsCollector] Saved metrics to {self.metrics_file}")
        except Exception as e:
            _logger.error(f"[MetricsCollector] Failed to save metrics: {e}")

    def _maybe_save_metrics(self) -> None:
        if self._dirty and (time.time() - self._last_save_time) >= self.SAVE_INTERVAL:
            self._save_metrics()
            self._last_save_time = time.time()
            self._dirty = False

    def force_save(self) -> None:
        """Save immediately if anything changed. Called on shutdown."""
        if self._dirty:
            self._save_metrics()
            self._last_save_time = time.time()
            self._dirty = False
            _logger.info("[MetricsCollector] Forced save on shutdown")

    def increment(self, metric_name: str, value: int = 1) -> None:
        self.metrics[metric_name] += value
        self._dirty = True
        self._maybe_save_metrics()

    def set(self, metric_name: str, value: int) -> None:
        self.metrics[metric_name] = value
        self._dirty = True
        self._maybe_save_metrics()

    def get(self, metric_name: str) -> int:
        """Current value of a metric (0 if it was never touched)."""
        return self.metrics.get(metric_name, 0)

    def get_all(self) -> Dict[str, int]:
        return dict(self.metrics)
