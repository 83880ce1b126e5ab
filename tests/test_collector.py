"""Windowed live-metric collection from the event store."""
from __future__ import annotations

import math
from datetime import timedelta

import pytest

from strategy_health.health.collector import (
    annualized_volatility,
    collect_live_metrics,
    compute_daily_returns,
    compute_windowed_max_drawdown,
)
from strategy_health.health.event_store import (
    CashflowEvent,
    InMemoryEventStore,
    InstanceState,
    LiveInstance,
    TradeCloseEvent,
)
from strategy_health.health.health_scoring import compute_health
from strategy_health.health.health_types import HealthStatus


def _store(balance, trades=(), cashflows=()):
    store = InMemoryEventStore()
    store.add_instance(LiveInstance(id="i"), InstanceState(balance=balance))
    for t in trades:
        store.add_trade("i", t)
    for c in cashflows:
        store.add_cashflow("i", c)
    return store


@pytest.mark.asyncio
class TestCollectLiveMetrics:
    async def test_missing_state_returns_zeroed_metrics(self, now):
        store = InMemoryEventStore()
        store.add_instance(LiveInstance(id="i"))
        live = await collect_live_metrics(store, "i", 30, now=now)
        assert live.total_trades == 0
        assert live.return_pct == 0.0
        assert live.window_days == 30
        assert live.trade_returns == []

    async def test_fixture_instance(self, event_store, now):
        live = await collect_live_metrics(event_store, "inst-1", 30, now=now)
        assert live.total_trades == 60
        assert live.return_pct == pytest.approx(6.0)  # 600 on a 10000 start
        assert live.win_rate == 100.0
        assert live.max_drawdown_pct == 0.0
        assert live.window_days == 30
        assert live.trades_per_day == pytest.approx(60 / 29.5)
        assert len(live.trade_returns) == 60
        assert live.trade_returns[0] == pytest.approx(0.1)

    async def test_pnl_includes_swap_and_commission(self, now):
        trades = [
            TradeCloseEvent(now - timedelta(days=2), profit=100.0, swap=-5.0, commission=-5.0),
            TradeCloseEvent(now - timedelta(days=1), profit=10.0, swap=0.0, commission=-20.0),
        ]
        live = await collect_live_metrics(_store(1080.0, trades), "i", 30, now=now)
        # net pnl 90 - 10 = 80; start balance 1000
        assert live.return_pct == pytest.approx(8.0)
        assert live.win_rate == pytest.approx(50.0)

    async def test_cashflows_excluded_from_return(self, now, make_trades):
        trades = make_trades(4, now - timedelta(days=5), spacing_hours=24, pnl=25.0)
        cashflows = [
            CashflowEvent(now - timedelta(days=3), amount=1000.0, type="DEPOSIT"),
            CashflowEvent(now - timedelta(days=2), amount=200.0, type="WITHDRAWAL"),
        ]
        # start 1000 + pnl 100 + deposit 1000 - withdrawal 200
        live = await collect_live_metrics(_store(1900.0, trades, cashflows), "i", 30, now=now)
        assert live.return_pct == pytest.approx(10.0)

    async def test_start_balance_floored_at_one(self, now):
        trades = [TradeCloseEvent(now - timedelta(days=1), profit=50.0)]
        live = await collect_live_metrics(_store(10.0, trades), "i", 30, now=now)
        assert live.return_pct == pytest.approx(5000.0)
        assert math.isfinite(live.volatility)

    async def test_events_outside_window_ignored(self, now):
        trades = [
            TradeCloseEvent(now - timedelta(days=45), profit=-500.0),
            TradeCloseEvent(now - timedelta(days=3), profit=20.0),
            TradeCloseEvent(now + timedelta(days=1), profit=999.0),
        ]
        live = await collect_live_metrics(_store(1020.0, trades), "i", 30, now=now)
        assert live.total_trades == 1
        assert live.max_drawdown_pct == 0.0

    async def test_window_days_is_elapsed_span(self, now, make_trades):
        trades = make_trades(10, now - timedelta(days=8), spacing_hours=20)
        live = await collect_live_metrics(_store(1100.0, trades), "i", 30, now=now)
        # 9 gaps of 20 hours = 7.5 days
        assert live.window_days == 8
        assert live.trades_per_day == pytest.approx(10 / 7.5)

    async def test_half_day_span_rounds_up_to_minimum(self, now, make_trades, baseline):
        # 13 gaps of 12 hours = 6.5 days, which must count as 7
        trades = make_trades(14, now - timedelta(days=6.5), spacing_hours=12)
        live = await collect_live_metrics(_store(1140.0, trades), "i", 30, now=now)
        assert live.window_days == 7
        assert compute_health(live, baseline).status != HealthStatus.INSUFFICIENT_DATA

    async def test_window_days_at_least_one(self, now, make_trades):
        trades = make_trades(3, now - timedelta(hours=3), spacing_hours=1)
        live = await collect_live_metrics(_store(1030.0, trades), "i", 30, now=now)
        assert live.window_days == 1
        assert live.trades_per_day == pytest.approx(3.0)

    async def test_no_trades_uses_nominal_window(self, now):
        live = await collect_live_metrics(_store(1000.0), "i", 14, now=now)
        assert live.window_days == 14
        assert live.trades_per_day == 0.0
        assert live.win_rate == 0.0

    async def test_trades_returned_in_time_order(self, now):
        trades = [
            TradeCloseEvent(now - timedelta(days=1), profit=-100.0),
            TradeCloseEvent(now - timedelta(days=2), profit=100.0),
        ]
        live = await collect_live_metrics(_store(1000.0, trades), "i", 30, now=now)
        # start 1000 -> 1100 -> 1000: drawdown from the 1100 peak
        assert live.max_drawdown_pct == pytest.approx(100 / 1100 * 100)
        assert live.trade_returns[0] == pytest.approx(10.0)


class TestDailyReturns:
    def test_grouped_by_calendar_day(self, now):
        day = now.replace(hour=1)
        trades = [
            TradeCloseEvent(day, profit=50.0),
            TradeCloseEvent(day + timedelta(hours=5), profit=50.0),
            TradeCloseEvent(day + timedelta(days=1), profit=-110.0),
        ]
        returns = compute_daily_returns(trades, 1000.0)
        assert returns == [pytest.approx(0.1), pytest.approx(-0.1)]

    def test_empty(self):
        assert compute_daily_returns([], 1000.0) == []

    def test_volatility_needs_two_days(self):
        assert annualized_volatility([0.01]) == 0.0
        assert annualized_volatility([0.01, -0.01]) == pytest.approx(
            math.sqrt(2 * 0.01 ** 2) * math.sqrt(252)
        )


class TestWindowedDrawdown:
    def test_peak_to_trough(self, now):
        trades = [
            TradeCloseEvent(now, profit=p) for p in (100.0, -220.0, 50.0, -30.0)
        ]
        # equity 1000 -> 1100 -> 880 -> 930 -> 900; worst 220/1100
        assert compute_windowed_max_drawdown(trades, 1000.0) == pytest.approx(20.0)

    def test_no_trades(self):
        assert compute_windowed_max_drawdown([], 1000.0) == 0.0
