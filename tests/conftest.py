"""Shared test fixtures for the strategy_health test suite."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from strategy_health.config_structured import reset_config
from strategy_health.health.baseline_extractor import BaselineRaw
from strategy_health.health.event_store import (
    CashflowEvent,
    InMemoryEventStore,
    InstanceState,
    LiveInstance,
    TradeCloseEvent,
)
from strategy_health.health.health_storage import InMemorySnapshotStore
from strategy_health.health.health_types import BaselineMetrics, LiveMetrics

# Fixed evaluation time; tests reach it through the ``now`` fixture
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _fresh_config():
    """Every test starts from the default config and leaves no patches behind."""
    reset_config()
    yield
    reset_config()


# ── Literal metric fixtures ──────────────────────────────────────────


@pytest.fixture
def baseline():
    return BaselineMetrics(
        return_pct=5.0, max_drawdown_pct=8.0, win_rate=55.0,
        trades_per_day=2.0, sharpe_ratio=1.2,
    )


@pytest.fixture
def matching_live():
    """Live metrics identical to ``baseline`` (60 trades over 30 days)."""
    return LiveMetrics(
        return_pct=5.0, volatility=0.0, max_drawdown_pct=8.0, win_rate=55.0,
        trades_per_day=2.0, total_trades=60, window_days=30,
    )


@pytest.fixture
def poor_live():
    return LiveMetrics(
        return_pct=-10.0, volatility=0.0, max_drawdown_pct=40.0, win_rate=20.0,
        trades_per_day=0.2, total_trades=60, window_days=30,
    )


# ── Store fixtures ───────────────────────────────────────────────────


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Mutable clock: ``clock.now`` is returned by ``clock()``."""

    class _Clock:
        def __init__(self):
            self.now = NOW

        def __call__(self):
            return self.now

        def advance(self, **kwargs):
            self.now = self.now + timedelta(**kwargs)

    return _Clock()


@pytest.fixture
def baseline_raw():
    """3000 profit on 10000 over 90 days, 180 trades -> 10% per 30 days."""
    return BaselineRaw(
        total_trades=180, win_rate=55.0, profit_factor=1.6, max_drawdown_pct=8.0,
        avg_trades_per_day=2.0, net_return_pct=30.0, sharpe_ratio=1.2,
        initial_deposit=10_000.0, backtest_duration_days=90.0,
    )


def _trades(n, start, spacing_hours=12.0, pnl=10.0):
    """``n`` trades spaced evenly from ``start``; ``pnl`` may be a list."""
    pnls = pnl if isinstance(pnl, list) else [pnl] * n
    return [
        TradeCloseEvent(timestamp=start + timedelta(hours=spacing_hours * i), profit=p)
        for i, p in enumerate(pnls)
    ]


@pytest.fixture
def make_trades():
    """Factory: ``make_trades(n, start, spacing_hours=12.0, pnl=10.0)``."""
    return _trades


@pytest.fixture
def event_store(baseline_raw):
    """Instance ``inst-1`` (version v1) with 60 trades over ~30 days."""
    store = InMemoryEventStore()
    store.add_instance(
        LiveInstance(id="inst-1", strategy_version_id="v1"),
        InstanceState(balance=10_600.0, equity=10_600.0, total_trades=60),
    )
    for trade in _trades(60, NOW - timedelta(days=29.5), pnl=10.0):
        store.add_trade("inst-1", trade)
    store.add_baseline("v1", baseline_raw)
    store.add_instance(LiveInstance(id="offline-1", strategy_version_id="v1", status="OFFLINE"))
    return store


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def deposit():
    return CashflowEvent(timestamp=NOW - timedelta(days=10), amount=1_000.0, type="DEPOSIT")
