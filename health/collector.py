"""Live metrics collection over a rolling window of the event log."""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ..config_structured import CollectorConfig, get_config
from .drift_detector import compute_trade_returns, sample_std
from .event_store import EventStore, TradeCloseEvent, ensure_utc
from .health_types import LiveMetrics

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


def _net_pnl(trade: TradeCloseEvent) -> float:
    pnl = trade.net_pnl
    return pnl if math.isfinite(pnl) else 0.0


def compute_daily_returns(trades: Sequence[TradeCloseEvent], start_balance: float) -> List[float]:
    """Per-calendar-day (UTC) returns, walking the balance forward day by day.

    A day's return is its summed PnL over the balance at the start of that
    day.  Days starting with a non-positive balance are skipped.
    """
    if not trades:
        return []

    daily_pnl = (
        pd.Series(
            [_net_pnl(t) for t in trades],
            index=pd.DatetimeIndex([ensure_utc(t.timestamp) for t in trades]),
        )
        .groupby(lambda ts: ts.date())
        .sum()
        .sort_index()
    )

    returns: List[float] = []
    balance = float(start_balance)
    for pnl in daily_pnl:
        if balance > 0:
            returns.append(float(pnl) / balance)
        balance += float(pnl)
    return returns


def annualized_volatility(daily_returns: Sequence[float], trading_days: int = 252) -> float:
    """Sample stdev of daily returns scaled by sqrt(trading_days); 0 below two days."""
    if len(daily_returns) < 2:
        return 0.0
    return sample_std(daily_returns) * math.sqrt(trading_days)


def compute_windowed_max_drawdown(trades: Sequence[TradeCloseEvent], start_balance: float) -> float:
    """Peak-to-trough drawdown % from the window's trades only."""
    if not trades:
        return 0.0

    equity = float(start_balance) + np.cumsum([_net_pnl(t) for t in trades])
    max_dd = 0.0
    peak = float(start_balance)
    for value in equity:
        peak = max(peak, float(value))
        if peak > 0:
            max_dd = max(max_dd, (peak - float(value)) / peak * 100.0)
    return max_dd


async def collect_live_metrics(
    event_store: EventStore,
    instance_id: str,
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
    config: Optional[CollectorConfig] = None,
) -> LiveMetrics:
    """Compute windowed live metrics for one instance.

    The three reads (state, trade closes, cashflows) run concurrently with
    no shared transaction; skew between them is tolerated.

    Returns a zeroed LiveMetrics with ``total_trades=0`` when the instance
    has no running state.
    """
    cfg = config or get_config().collector
    window_days = window_days or cfg.window_days
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    since = now - timedelta(days=window_days)

    state, trades, cashflows = await asyncio.gather(
        event_store.get_state(instance_id),
        event_store.get_trade_close_events(instance_id, since, now),
        event_store.get_cashflow_events(instance_id, since, now),
    )

    if state is None:
        logger.debug("No track-record state for %s; returning empty metrics", instance_id)
        return LiveMetrics(window_days=window_days)

    pnls = [_net_pnl(t) for t in trades]
    total_trades = len(pnls)
    total_pnl = float(sum(pnls))
    net_cashflow = float(sum(c.signed_amount for c in cashflows if math.isfinite(c.amount)))

    balance = state.balance if math.isfinite(state.balance) else 0.0
    start_balance = max(balance - total_pnl - net_cashflow, cfg.min_start_balance)
    return_pct = total_pnl / start_balance * 100.0

    volatility = annualized_volatility(
        compute_daily_returns(trades, start_balance), cfg.trading_days_per_year,
    )
    max_drawdown_pct = compute_windowed_max_drawdown(trades, start_balance)

    wins = sum(1 for pnl in pnls if pnl > 0)
    win_rate = wins / total_trades * 100.0 if total_trades else 0.0

    actual_days = float(window_days)
    if trades:
        first = ensure_utc(trades[0].timestamp)
        last = ensure_utc(trades[-1].timestamp)
        elapsed = (last - first).total_seconds() / _SECONDS_PER_DAY
        actual_days = min(max(1.0, elapsed), float(window_days))

    return LiveMetrics(
        return_pct=return_pct,
        volatility=volatility,
        max_drawdown_pct=max_drawdown_pct,
        win_rate=win_rate,
        trades_per_day=total_trades / max(actual_days, 1.0),
        total_trades=total_trades,
        window_days=int(math.floor(actual_days + 0.5)),  # halves round up
        trade_returns=compute_trade_returns(pnls, start_balance),
    )
