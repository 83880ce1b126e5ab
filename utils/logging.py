"""
Structured logging for strategy health monitoring.

Provides:
    - StructuredFormatter: JSON formatter for machine-parseable log output.
    - configure_logging: Root logger setup driven by LOG_LEVEL / LOG_FORMAT.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

TEXT_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output.

    Each log record is serialised as a single JSON line containing at minimum:
        timestamp, level, module, message.
    If the record carries a ``metrics`` attribute (set via ``extra={"metrics": {...}}``),
    those key-value pairs are included under the ``"metrics"`` key.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        if hasattr(record, "metrics"):
            log_entry["metrics"] = record.metrics
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _make_formatter(fmt: str) -> logging.Formatter:
    if fmt == "structured":
        return StructuredFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger for a process (CLI, worker, embedding app).

    Falls back to ``LOG_LEVEL`` / ``LOG_FORMAT`` from the engine config when
    arguments are omitted.  Replaces any handlers already on the root logger.
    """
    if level is None or fmt is None:
        from ..config_structured import get_config

        log_cfg = get_config().log
        level = level or log_cfg.level
        fmt = fmt or log_cfg.format

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_make_formatter(fmt))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
