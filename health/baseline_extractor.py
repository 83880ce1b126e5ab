"""Baseline extraction: normalise a backtest summary into BaselineMetrics.

All baseline returns are expressed as a 30-day-equivalent rate so they
compare directly against live metrics computed over any window.  The raw
record (``BaselineRaw``) is what the baseline store persists; the evaluator
re-normalises it with ``baseline_from_raw``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from ..config_structured import BaselineConfig, get_config
from .health_types import BaselineMetrics

logger = logging.getLogger(__name__)

# snake_case field -> camelCase key used by exported backtest JSON
_CAMEL_KEYS = {
    "total_trades": "totalTrades",
    "win_rate": "winRate",
    "profit_factor": "profitFactor",
    "max_drawdown": "maxDrawdown",
    "max_drawdown_percent": "maxDrawdownPercent",
    "net_profit": "netProfit",
    "sharpe_ratio": "sharpeRatio",
    "initial_deposit": "initialDeposit",
    "final_balance": "finalBalance",
}


@dataclass
class BacktestResultSummary:
    """Summary fields of a completed backtest."""

    total_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    net_profit: float = 0.0
    sharpe_ratio: float = 0.0
    initial_deposit: float = 0.0
    final_balance: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacktestResultSummary":
        """Build from a parsed backtest result; camelCase or snake_case keys."""
        kwargs: Dict[str, Any] = {}
        for name, camel in _CAMEL_KEYS.items():
            value = data.get(name, data.get(camel))
            if value is None:
                continue
            kwargs[name] = int(value) if name == "total_trades" else float(value)
        return cls(**kwargs)


@dataclass
class BaselineRaw:
    """Backtest-derived fields persisted per strategy version."""

    total_trades: int
    win_rate: float
    profit_factor: float
    max_drawdown_pct: float
    avg_trades_per_day: float
    net_return_pct: float
    sharpe_ratio: float
    initial_deposit: float
    backtest_duration_days: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BaselineExtraction:
    metrics: BaselineMetrics
    raw: BaselineRaw


def extract_baseline_metrics(
    backtest_result: BacktestResultSummary,
    duration_days: float,
    config: Optional[BaselineConfig] = None,
) -> BaselineExtraction:
    """Normalise a backtest result to the live-metric units.

    Parameters
    ----------
    backtest_result : BacktestResultSummary
        Parsed backtest summary.
    duration_days : float
        Backtest length in days; known, or from ``estimate_backtest_duration``.

    Returns
    -------
    BaselineExtraction
        ``metrics`` with a 30-day-equivalent ``return_pct`` and ``volatility``
        left as None (the scorer estimates it from Sharpe), plus the ``raw``
        record to persist.
    """
    if duration_days <= 0:
        raise ValueError(f"Backtest duration must be positive, got {duration_days}")

    cfg = config or get_config().baseline
    initial_deposit = backtest_result.initial_deposit or cfg.default_initial_deposit
    net_return_pct = backtest_result.net_profit / initial_deposit * 100.0
    avg_trades_per_day = backtest_result.total_trades / duration_days

    raw = BaselineRaw(
        total_trades=backtest_result.total_trades,
        win_rate=backtest_result.win_rate,
        profit_factor=backtest_result.profit_factor,
        max_drawdown_pct=backtest_result.max_drawdown_percent,
        avg_trades_per_day=avg_trades_per_day,
        net_return_pct=net_return_pct,
        sharpe_ratio=backtest_result.sharpe_ratio,
        initial_deposit=initial_deposit,
        backtest_duration_days=duration_days,
    )
    metrics = baseline_from_raw(raw, config=cfg)
    logger.debug(
        "Extracted baseline: net %.2f%% over %s days -> %.2f%% per %d days",
        net_return_pct, duration_days, metrics.return_pct, cfg.normalization_days,
    )
    return BaselineExtraction(metrics=metrics, raw=raw)


def baseline_from_raw(
    raw: BaselineRaw,
    config: Optional[BaselineConfig] = None,
) -> BaselineMetrics:
    """Re-normalise a stored baseline's duration-scaled return to 30 days."""
    cfg = config or get_config().baseline
    if raw.backtest_duration_days > 0:
        daily_return_pct = raw.net_return_pct / raw.backtest_duration_days
    else:
        daily_return_pct = 0.0
    return BaselineMetrics(
        return_pct=daily_return_pct * cfg.normalization_days,
        max_drawdown_pct=raw.max_drawdown_pct,
        win_rate=raw.win_rate,
        trades_per_day=raw.avg_trades_per_day,
        sharpe_ratio=raw.sharpe_ratio,
        volatility=None,
    )


def estimate_backtest_duration(
    backtest_result: BacktestResultSummary,
    config: Optional[BaselineConfig] = None,
) -> int:
    """Estimate backtest length in days assuming ~2 trades per day, at least 30."""
    cfg = config or get_config().baseline
    if backtest_result.total_trades > 0:
        return max(
            cfg.min_duration_days,
            int(math.floor(backtest_result.total_trades / cfg.assumed_trades_per_day + 0.5)),
        )
    return cfg.default_duration_days
