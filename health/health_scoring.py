"""Health scoring: tolerance-band metric scores, hysteretic status, drift.

Pure functions only.  ``compute_health`` is deterministic given its inputs;
the previous status is passed in explicitly rather than read from any
module-level state.
"""
from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Tuple

from ..config_structured import METRIC_NAMES, SystemConfig, get_config
from .drift_detector import compute_cusum, sample_std
from .health_confidence import compute_confidence_interval, confidence_multiplier
from .health_types import (
    BaselineMetrics,
    ConfidenceInterval,
    CusumResult,
    HealthResult,
    HealthStatus,
    LiveMetrics,
    MetricScore,
)

METRIC_DISPLAY_NAMES = {
    "return": "Return",
    "volatility": "Volatility",
    "drawdown": "Drawdown",
    "winRate": "Win rate",
    "tradeFrequency": "Trade frequency",
}

# Neutral score for a metric whose baseline value is exactly 0.
NEUTRAL_SCORE = 0.5


def _finite(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


def _clip01(value: float) -> float:
    return min(1.0, max(0.0, value))


# ── Per-metric scoring ───────────────────────────────────────────────


def score_metric(
    live_value: float,
    baseline_value: float,
    name: str,
    total_trades: int,
    config: Optional[SystemConfig] = None,
) -> float:
    """Score one metric against its baseline using confidence-scaled bands.

    Deviation is measured in the "worse" direction relative to |baseline|.
    Up to ``tolerance`` scores 1.0, interpolates linearly to 0.5 at
    ``warning`` and to 0.0 at ``alarm``.  Every band is multiplied by
    ``confidence_multiplier(total_trades)``.
    """
    cfg = config or get_config()
    t = cfg.scoring.thresholds[name]
    live_value = _finite(live_value)
    baseline_value = _finite(baseline_value)
    if baseline_value == 0:
        return NEUTRAL_SCORE

    if t.higher_is_better:
        deviation = (baseline_value - live_value) / abs(baseline_value)
    else:
        deviation = (live_value - baseline_value) / abs(baseline_value)

    if deviation <= 0:
        return 1.0

    cm = confidence_multiplier(total_trades, cfg.scoring)
    tolerance = t.tolerance * cm
    warning = t.warning * cm
    alarm = t.alarm * cm

    if deviation <= tolerance:
        return 1.0
    if deviation <= warning:
        return 1.0 - 0.5 * (deviation - tolerance) / (warning - tolerance)
    if deviation <= alarm:
        return 0.5 - 0.5 * (deviation - warning) / (alarm - warning)
    return 0.0


def _absolute_return(x: float) -> float:
    if x >= 0:
        return min(1.0, 0.7 + x * 0.03)
    return max(0.0, 0.7 + x * 0.02)


def _absolute_volatility(x: float) -> float:
    if x <= 0.15:
        return 1.0
    return max(0.0, 1.0 - (x - 0.15) * 2)


def _absolute_drawdown(x: float) -> float:
    if x <= 5:
        return 1.0
    if x <= 10:
        return 0.8
    if x <= 20:
        return 0.5
    return max(0.0, 0.5 - (x - 20) * 0.02)


def _absolute_win_rate(x: float) -> float:
    if x >= 50:
        return 1.0
    if x >= 40:
        return 0.8
    if x >= 30:
        return 0.5
    return max(0.0, x / 60)


def _absolute_trade_frequency(x: float) -> float:
    return 0.8 if x > 0 else 0.3


_ABSOLUTE_SCORERS: Dict[str, Callable[[float], float]] = {
    "return": _absolute_return,
    "volatility": _absolute_volatility,
    "drawdown": _absolute_drawdown,
    "winRate": _absolute_win_rate,
    "tradeFrequency": _absolute_trade_frequency,
}


def score_metric_absolute(live_value: float, name: str) -> float:
    """Score a metric without a baseline using fixed heuristics."""
    scorer = _ABSOLUTE_SCORERS.get(name)
    if scorer is None:
        return NEUTRAL_SCORE
    return _clip01(scorer(_finite(live_value)))


def estimate_baseline_volatility(
    baseline: BaselineMetrics,
    config: Optional[SystemConfig] = None,
) -> float:
    """Approximate baseline volatility as |return / Sharpe| / 100."""
    cfg = config or get_config()
    sharpe = _finite(baseline.sharpe_ratio)
    if abs(sharpe) < cfg.scoring.min_sharpe_for_volatility:
        return cfg.scoring.default_baseline_volatility
    return abs(_finite(baseline.return_pct) / sharpe) / 100.0


# ── Status state machine ─────────────────────────────────────────────


def build_transition_table(
    config: Optional[SystemConfig] = None,
) -> Dict[Optional[HealthStatus], List[Tuple[float, HealthStatus]]]:
    """(previous status) -> ordered [(minimum score, next status), ...].

    The first row whose minimum the score reaches wins.  The margin widens
    the band a status must leave before it is abandoned and narrows the
    band a lower status must enter before it is promoted.
    """
    s = (config or get_config()).scoring
    healthy, warning, m = s.healthy_threshold, s.warning_threshold, s.hysteresis_margin
    floor = -math.inf
    simple = [
        (healthy, HealthStatus.HEALTHY),
        (warning, HealthStatus.WARNING),
        (floor, HealthStatus.DEGRADED),
    ]
    return {
        None: simple,
        HealthStatus.INSUFFICIENT_DATA: simple,
        HealthStatus.HEALTHY: [
            (healthy - m, HealthStatus.HEALTHY),
            (warning - m, HealthStatus.WARNING),
            (floor, HealthStatus.DEGRADED),
        ],
        HealthStatus.WARNING: [
            (healthy + m, HealthStatus.HEALTHY),
            (warning - m, HealthStatus.WARNING),
            (floor, HealthStatus.DEGRADED),
        ],
        HealthStatus.DEGRADED: [
            (healthy + m, HealthStatus.HEALTHY),
            (warning + m, HealthStatus.WARNING),
            (floor, HealthStatus.DEGRADED),
        ],
    }


def determine_status(
    overall_score: float,
    previous_status: Optional[HealthStatus] = None,
    config: Optional[SystemConfig] = None,
) -> HealthStatus:
    """Map a score to a status, applying hysteresis against ``previous_status``."""
    if previous_status is not None:
        previous_status = HealthStatus(previous_status)
    for minimum, status in build_transition_table(config)[previous_status]:
        if overall_score >= minimum:
            return status
    return HealthStatus.DEGRADED


# ── Diagnostics ──────────────────────────────────────────────────────


def compute_primary_driver(
    metrics: Dict[str, MetricScore],
    config: Optional[SystemConfig] = None,
) -> Optional[str]:
    """Label the metric with the largest weighted drag, weight * (1 - score)."""
    cfg = config or get_config()
    worst_name = None
    worst_drag = 0.0
    for name, m in metrics.items():
        drag = m.weight * (1.0 - m.score)
        if drag > worst_drag:
            worst_name, worst_drag = name, drag

    if worst_name is None or worst_drag <= cfg.scoring.primary_driver_min_drag:
        return None
    label = METRIC_DISPLAY_NAMES.get(worst_name, worst_name)
    return f"{label} is the primary factor (score: {round(metrics[worst_name].score * 100)}%)"


def compute_expected_mean(live: LiveMetrics, baseline: BaselineMetrics) -> float:
    """Baseline 30-day return re-expressed per trade.

    When the baseline has no trade frequency the fallback divides the 30-day
    return by the live trade count, which mixes units (a 30-day rate against
    a per-trade rate).  Known inconsistency, kept as-is.
    """
    trades_per_day = _finite(baseline.trades_per_day)
    if trades_per_day > 0:
        return _finite(baseline.return_pct) / 30.0 / trades_per_day
    return _finite(baseline.return_pct) / max(live.total_trades, 1)


def _drift(
    live: LiveMetrics,
    baseline: Optional[BaselineMetrics],
    config: SystemConfig,
) -> CusumResult:
    if baseline is None or len(live.trade_returns) < config.drift.min_returns:
        return CusumResult()
    returns = [_finite(r) for r in live.trade_returns]
    return compute_cusum(
        returns,
        compute_expected_mean(live, baseline),
        sample_std(returns),
        config=config.drift,
    )


# ── Entry point ──────────────────────────────────────────────────────


def _insufficient_data(live: LiveMetrics, baseline: Optional[BaselineMetrics], cfg: SystemConfig) -> HealthResult:
    live_values = _live_values(live)
    metrics = {
        name: MetricScore(
            name=name,
            score=0.0,
            weight=cfg.scoring.thresholds[name].weight,
            live_value=live_values[name],
            baseline_value=None,
        )
        for name in METRIC_NAMES
    }
    return HealthResult(
        status=HealthStatus.INSUFFICIENT_DATA,
        overall_score=0.0,
        confidence_interval=ConfidenceInterval(0.0, 0.0),
        drift=CusumResult(),
        metrics=metrics,
        live=live,
        baseline=baseline,
        primary_driver=None,
    )


def _live_values(live: LiveMetrics) -> Dict[str, float]:
    return {
        "return": _finite(live.return_pct),
        "volatility": _finite(live.volatility),
        "drawdown": _finite(live.max_drawdown_pct),
        "winRate": _finite(live.win_rate),
        "tradeFrequency": _finite(live.trades_per_day),
    }


def _baseline_values(
    baseline: Optional[BaselineMetrics],
    cfg: SystemConfig,
) -> Dict[str, Optional[float]]:
    if baseline is None:
        return {name: None for name in METRIC_NAMES}
    volatility = baseline.volatility
    if volatility is None:
        volatility = estimate_baseline_volatility(baseline, cfg)
    return {
        "return": baseline.return_pct,
        "volatility": volatility,
        "drawdown": baseline.max_drawdown_pct,
        "winRate": baseline.win_rate,
        "tradeFrequency": baseline.trades_per_day,
    }


def compute_health(
    live: LiveMetrics,
    baseline: Optional[BaselineMetrics],
    previous_status: Optional[HealthStatus] = None,
    config: Optional[SystemConfig] = None,
) -> HealthResult:
    """Assess live behaviour against the backtest baseline.

    Parameters
    ----------
    live : LiveMetrics
        Windowed live metrics from the collector.
    baseline : BaselineMetrics or None
        Normalised backtest expectation.  Without one, every metric falls
        back to absolute heuristics and no drift is computed.
    previous_status : HealthStatus, optional
        Status of the last snapshot, used for hysteresis.

    Returns
    -------
    HealthResult
        INSUFFICIENT_DATA (all scores 0) when the sample is below the
        minimum trade count or day span.
    """
    cfg = config or get_config()
    scoring = cfg.scoring

    if (
        live.total_trades < scoring.min_trades_for_assessment
        or live.window_days < scoring.min_days_for_assessment
    ):
        return _insufficient_data(live, baseline, cfg)

    n = live.total_trades
    live_values = _live_values(live)
    baseline_values = _baseline_values(baseline, cfg)

    metrics: Dict[str, MetricScore] = {}
    for name in METRIC_NAMES:
        base = baseline_values[name]
        if base is not None:
            score = score_metric(live_values[name], base, name, n, cfg)
        else:
            score = score_metric_absolute(live_values[name], name)
        metrics[name] = MetricScore(
            name=name,
            score=_clip01(score),
            weight=scoring.thresholds[name].weight,
            live_value=live_values[name],
            baseline_value=base,
        )

    overall_score = sum(m.weight * m.score for m in metrics.values())

    return HealthResult(
        status=determine_status(overall_score, previous_status, cfg),
        overall_score=overall_score,
        confidence_interval=compute_confidence_interval(overall_score, n, scoring),
        drift=_drift(live, baseline, cfg),
        metrics=metrics,
        live=live,
        baseline=baseline,
        primary_driver=compute_primary_driver(metrics, cfg),
    )
