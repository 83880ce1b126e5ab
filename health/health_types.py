"""Core types for strategy health assessment.

Shared dataclasses used by the collector, scorer, drift detector and
evaluator.  Every record exposes ``to_dict()`` for persistence and logging.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class HealthStatus(str, Enum):
    """Status of a live strategy instance relative to its backtest."""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    DEGRADED = "DEGRADED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass
class LiveMetrics:
    """Windowed live-trading metrics, recomputed every evaluation."""

    return_pct: float = 0.0
    volatility: float = 0.0  # annualised stdev of daily returns
    max_drawdown_pct: float = 0.0  # windowed, not all-time
    win_rate: float = 0.0  # 0–100
    trades_per_day: float = 0.0
    total_trades: int = 0
    window_days: int = 0
    trade_returns: List[float] = field(default_factory=list)  # % of running balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "return_pct": self.return_pct, "volatility": self.volatility,
            "max_drawdown_pct": self.max_drawdown_pct, "win_rate": self.win_rate,
            "trades_per_day": self.trades_per_day, "total_trades": self.total_trades,
            "window_days": self.window_days, "trade_returns": list(self.trade_returns),
        }


@dataclass
class BaselineMetrics:
    """Backtest expectation, normalised to a 30-day-equivalent return."""

    return_pct: float
    max_drawdown_pct: float
    win_rate: float
    trades_per_day: float
    sharpe_ratio: float
    volatility: Optional[float] = None  # estimated from Sharpe when absent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "return_pct": self.return_pct, "max_drawdown_pct": self.max_drawdown_pct,
            "win_rate": self.win_rate, "trades_per_day": self.trades_per_day,
            "sharpe_ratio": self.sharpe_ratio, "volatility": self.volatility,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BaselineMetrics":
        return cls(
            return_pct=float(data["return_pct"]),
            max_drawdown_pct=float(data["max_drawdown_pct"]),
            win_rate=float(data["win_rate"]),
            trades_per_day=float(data["trades_per_day"]),
            sharpe_ratio=float(data["sharpe_ratio"]),
            volatility=data.get("volatility"),
        )


@dataclass
class MetricScore:
    """Score for one of the five health metrics."""

    name: str
    score: float  # 0–1
    weight: float
    live_value: float
    baseline_value: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name, "score": self.score, "weight": self.weight,
            "live_value": self.live_value, "baseline_value": self.baseline_value,
        }


@dataclass
class ConfidenceInterval:
    lower: float = 0.0
    upper: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}


@dataclass
class CusumResult:
    """Result of one-sided lower CUSUM over per-trade returns."""

    cusum_value: float = 0.0
    drift_detected: bool = False
    drift_severity: float = 0.0  # 0–1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cusum_value": self.cusum_value,
            "drift_detected": self.drift_detected,
            "drift_severity": self.drift_severity,
        }


# Drift section of a HealthResult has the same shape as the detector output.
DriftInfo = CusumResult


@dataclass
class HealthResult:
    """Outcome of a single health evaluation."""

    status: HealthStatus
    overall_score: float
    confidence_interval: ConfidenceInterval
    drift: DriftInfo
    metrics: Dict[str, MetricScore]
    live: LiveMetrics
    baseline: Optional[BaselineMetrics] = None
    primary_driver: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "overall_score": self.overall_score,
            "confidence_interval": self.confidence_interval.to_dict(),
            "drift": self.drift.to_dict(),
            "primary_driver": self.primary_driver,
            "metrics": {name: m.to_dict() for name, m in self.metrics.items()},
            "live": self.live.to_dict(),
            "baseline": self.baseline.to_dict() if self.baseline else None,
        }
