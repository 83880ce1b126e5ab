"""
Edge-decay detection: one-sided lower CUSUM over per-trade returns.

Tracks cumulative shortfall of observed per-trade returns against the
baseline expectancy.  A single evaluation's tolerance bands wash out noise;
a sustained shift in the mean accumulates here until it crosses the decision
threshold.

    S_0 = 0
    S_n = max(0, S_{n-1} + (mu_0 - x_n) - k)

    mu_0 = expected mean return per trade (% of balance, from baseline)
    k    = allowance, half the shift to detect (0.5 sigma)
    h    = decision threshold (4 sigma); S_n > h signals drift

k = 0.5 sigma and h = 4 sigma give an in-control average run length of
roughly 100+ trades before a false alarm.

The statistic is recomputed from the full series on every call; there is
no stored running state.

References:
    - Page, E.S. (1954). "Continuous inspection schemes." Biometrika.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..config_structured import DriftConfig, get_config
from .health_types import CusumResult


def sample_std(values: Sequence[float]) -> float:
    """Sample standard deviation (ddof=1); 0.0 with fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1))


def compute_cusum(
    trade_returns: Sequence[float],
    expected_mean: float,
    std_dev: float,
    config: Optional[DriftConfig] = None,
) -> CusumResult:
    """Run lower CUSUM over ``trade_returns``.

    Parameters
    ----------
    trade_returns : sequence of float
        Per-trade PnL as % of running balance, in time order.
    expected_mean : float
        Expected per-trade return (%) implied by the baseline.
    std_dev : float
        Per-trade return stdev (%).  Values <= 0 trigger estimation from the
        series itself (sample variance), falling back to 1.0 if that is also 0.

    Returns
    -------
    CusumResult
        Zeroed when fewer than ``min_returns`` observations are available.
    """
    cfg = config or get_config().drift
    if len(trade_returns) < cfg.min_returns:
        return CusumResult()

    returns = np.nan_to_num(np.asarray(trade_returns, dtype=float), nan=0.0, posinf=0.0, neginf=0.0)
    if not np.isfinite(expected_mean):
        expected_mean = 0.0

    sigma = float(std_dev) if np.isfinite(std_dev) else 0.0
    if sigma <= 0:
        sigma = sample_std(returns)
        if sigma <= 0:
            sigma = 1.0

    k = cfg.allowance_sigma * sigma
    h = cfg.threshold_sigma * sigma

    cusum = 0.0
    for x in returns:
        cusum = max(0.0, cusum + (expected_mean - float(x)) - k)

    return CusumResult(
        cusum_value=cusum,
        drift_detected=cusum > h,
        drift_severity=min(1.0, cusum / max(h, cfg.min_threshold)),
    )


def compute_trade_returns(trade_pnls: Iterable[float], start_balance: float) -> List[float]:
    """Per-trade net PnL as a percentage of the balance before that trade.

    The balance is rolled forward by each trade's PnL.  Trades taken while
    the running balance is <= 0 are skipped.  Returns an empty list when the
    starting balance is not positive.
    """
    if start_balance <= 0:
        return []

    returns: List[float] = []
    balance = float(start_balance)
    for pnl in trade_pnls:
        if balance > 0:
            returns.append(pnl / balance * 100.0)
        balance += pnl
    return returns
