"""Structured JSON logging and observability helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

SERVICE_NAME = "lending-cache"

_cache_logger = logging.getLogger("lending_cache.cache.ops")
_upstream_logger = logging.getLogger("lending_cache.upstream.calls")


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def __init__(self, service: str = SERVICE_NAME) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self._service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        extra_data = getattr(record, "extra_data", None)
        if extra_data is not None:
            log_entry["data"] = extra_data
        return json.dumps(log_entry, default=str)


def setup_structured_logging(
    *,
    log_file: Path | None = None,
    level: int = logging.INFO,
) -> None:
    """Point the root logger at JSON output on stderr and, optionally, a file."""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter = JSONFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def log_cache_operation(operation: str, key: str, *, hit: bool | None = None, duration_ms: float | None = None) -> None:
    """Emit a DEBUG record describing one cache operation."""
    data: dict[str, Any] = {"operation": operation, "key": key}
    if hit is not None:
        data["hit"] = hit
    if duration_ms is not None:
        data["duration_ms"] = round(duration_ms, 3)
    _cache_logger.debug("Cache %s %s", operation, key, extra={"extra_data": data})


def log_upstream_call(action: str, *, duration_ms: float, error: str | None = None) -> None:
    """Record the outcome and latency of one upstream call."""
    data: dict[str, Any] = {"action": action, "duration_ms": round(duration_ms, 3), "success": error is None}
    if error is None:
        _upstream_logger.info("Upstream call: %s", action, extra={"extra_data": data})
    else:
        data["error"] = error
        _upstream_logger.warning("Upstream call failed: %s (%s)", action, error, extra={"extra_data": data})
