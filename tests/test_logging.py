"""JSON-lines log formatting and root logger setup."""
from __future__ import annotations

import json
import logging
import sys

import pytest

from strategy_health.utils.logging import StructuredFormatter, configure_logging


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord(
        name="strategy_health.health.health_service", level=logging.INFO,
        pathname=__file__, lineno=1, msg=msg, args=args, exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestStructuredFormatter:
    def test_core_fields(self):
        entry = json.loads(StructuredFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "strategy_health.health.health_service"
        assert entry["message"] == "hello world"
        assert "metrics" not in entry

    def test_metrics_extra(self):
        record = _record(metrics={"instance_id": "inst-1", "overall_score": 0.81})
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["metrics"] == {"instance_id": "inst-1", "overall_score": 0.81}

    def test_exception_text(self):
        try:
            raise RuntimeError("storage timeout")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(StructuredFormatter().format(record))
        assert "storage timeout" in entry["exception"]


class TestConfigureLogging:
    def test_structured(self, restore_root):
        configure_logging("DEBUG", "structured")
        assert restore_root.level == logging.DEBUG
        assert isinstance(restore_root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_text_falls_back_to_config_level(self, restore_root):
        configure_logging(fmt="text")
        assert restore_root.level == logging.INFO
        assert not isinstance(restore_root.handlers[0].formatter, StructuredFormatter)
