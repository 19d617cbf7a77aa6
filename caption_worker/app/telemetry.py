# caption_worker/app/telemetry.py
from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import logging

log = logging.getLogger(__name__)

COUNTERS = (
    "messages_total",
    "decode_failed",
    "skipped_captioned",
    "duplicates_suppressed",
    "rejected_backpressure",
    "enrich_total",
    "enrich_failed",
    "enrich_skipped",
    "persist_failed",
    "publish_failed",
    "published_total",
    "dead_lettered",
    "subscribe_errors",
)


class Telemetry:
    """
    Thread-safe telemetry for the caption worker.

    Provides in-memory counters and structured JSON logging to <log_dir>/worker.jsonl.
    All operations are wrapped in try/except to ensure telemetry failures never crash a worker.
    Pass log_dir=None to keep everything in memory (tests).
    """

    def __init__(self, log_dir: Union[str, Path, None] = None, max_log_mb: int = 16):
        self._lock = threading.Lock()
        self._uptime_start = time.time()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        self._last_error: Optional[str] = None

        self._log_dir = Path(log_dir) if log_dir else None
        self._log_file = self._log_dir / "worker.jsonl" if self._log_dir else None
        self._max_log_bytes = max_log_mb * 1024 * 1024

        if self._log_dir is not None:
            try:
                self._log_dir.mkdir(parents=True, exist_ok=True)
            except Exception as e:
                log.warning(f"Failed to create log directory {self._log_dir}: {e}")
                self._log_file = None

    def increment(self, counter_name: str, by: int = 1) -> None:
        """Thread-safe counter increment. Unknown names are ignored."""
        try:
            with self._lock:
                if counter_name in self._counters:
                    self._counters[counter_name] += by
        except Exception as e:
            log.debug(f"Telemetry increment failed for {counter_name}: {e}")

    def set_error(self, error: str) -> None:
        try:
            with self._lock:
                self._last_error = str(error)
        except Exception as e:
            log.debug(f"Telemetry set_error failed: {e}")

    def log_json(self, event: str, level: str = "info", **fields: Any) -> None:
        """
        Write structured JSON log entry to worker.jsonl.

        Fields: ts, level, subsystem="caption_worker", event, plus any kwargs.
        """
        if self._log_file is None:
            return
        try:
            log_entry = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "level": level,
                "subsystem": "caption_worker",
                "event": event,
                **fields,
            }

            self._maybe_rotate_log()

            with self._lock:
                with open(self._log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(log_entry, ensure_ascii=False, default=str) + "\n")

        except Exception as e:
            log.debug(f"Telemetry log_json failed: {e}")

    def _maybe_rotate_log(self) -> None:
        """Rotate log file if it exceeds size limit (2-deep: .1, .2)."""
        try:
            if (
                self._log_file.exists()
                and self._log_file.stat().st_size > self._max_log_bytes
            ):
                log_file_2 = self._log_file.with_suffix(".jsonl.2")
                log_file_1 = self._log_file.with_suffix(".jsonl.1")

                if log_file_2.exists():
                    log_file_2.unlink()

                if log_file_1.exists():
                    log_file_1.rename(log_file_2)

                self._log_file.rename(log_file_1)
        except Exception as e:
            log.warning(f"Log rotation failed: {e}")

    def get(self, counter_name: str) -> int:
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_stats(self) -> Dict[str, Any]:
        """Get current telemetry statistics."""
        try:
            with self._lock:
                return {
                    "uptime_s": int(time.time() - self._uptime_start),
                    **self._counters,
                    "last_error": self._last_error,
                }
        except Exception as e:
            log.debug(f"Telemetry get_stats failed: {e}")
            return {
                "uptime_s": 0,
                **{name: 0 for name in COUNTERS},
                "last_error": None,
            }
