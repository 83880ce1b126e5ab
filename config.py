"""
Central configuration for strategy health monitoring.

Backward-compatible flat-constant interface.  All values are derived from
the structured config singleton (``config_structured.py``) so there is a
single source of truth; ``config_data/health.yaml`` overrides land here
automatically on import.

Config Status Legend
====================
Each constant is annotated with one of the following statuses:

  MIRRORED    — Snapshot of a runtime-adjustable value.
                ``RuntimeConfig.patch`` rewrites it alongside the structured
                config.  Not read by package code.
  EXPORTED    — Snapshot taken at import for external callers.  Not read by
                package code and not updated by runtime patches.

Search for ``# STATUS:`` to locate all annotations.

The scorer, collector, evaluator and CLI read ``get_config()`` at call time;
edit health.yaml or patch through ``health.runtime_config.RuntimeConfig`` to
change behaviour, not these names.
"""
from pathlib import Path
from typing import Any, Dict, List

try:
    from .config_structured import get_config as _get_config
except ImportError:
    from config_structured import get_config as _get_config

_cfg = _get_config()

# ── Paths ──────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).parent                  # STATUS: EXPORTED — package root
CONFIG_DATA_DIR = ROOT_DIR / "config_data"        # STATUS: EXPORTED — holds the bundled health.yaml
HEALTH_DB_PATH = _cfg.storage.db_path             # STATUS: EXPORTED — storage.db_path; SQLite event + snapshot store
HEALTH_DB_TIMEOUT_SECONDS = _cfg.storage.timeout_seconds  # STATUS: EXPORTED — storage.timeout_seconds
HEALTH_HISTORY_LIMIT = _cfg.storage.history_limit  # STATUS: EXPORTED — storage.history_limit; snapshots per history query

# ── Metric Tolerance Bands ────────────────────────────────────────────
# Relative deviation from baseline: <= tolerance scores 1.0, warning maps to
# 0.5, alarm and beyond score 0.0.  Bands widen by the confidence multiplier.
THRESHOLDS: Dict[str, Dict[str, Any]] = {         # STATUS: EXPORTED — scoring.thresholds
    name: {
        "weight": t.weight,
        "tolerance": t.tolerance,
        "warning": t.warning,
        "alarm": t.alarm,
        "higher_is_better": t.higher_is_better,
    }
    for name, t in _cfg.scoring.thresholds.items()
}
METRIC_NAMES: List[str] = list(THRESHOLDS)        # STATUS: EXPORTED — return, volatility, drawdown, winRate, tradeFrequency

# ── Sample Size ───────────────────────────────────────────────────────
REFERENCE_TRADES = _cfg.scoring.reference_trades  # STATUS: MIRRORED — bands at base width from this N
MIN_TRADES_FOR_ASSESSMENT = _cfg.scoring.min_trades_for_assessment  # STATUS: MIRRORED — below this → INSUFFICIENT_DATA
MIN_DAYS_FOR_ASSESSMENT = _cfg.scoring.min_days_for_assessment      # STATUS: MIRRORED — below this → INSUFFICIENT_DATA

# ── Status Thresholds & Hysteresis ────────────────────────────────────
HEALTHY_THRESHOLD = _cfg.scoring.healthy_threshold  # STATUS: MIRRORED — score >= this → HEALTHY
WARNING_THRESHOLD = _cfg.scoring.warning_threshold  # STATUS: MIRRORED — score >= this → WARNING, else DEGRADED
HYSTERESIS_MARGIN = _cfg.scoring.hysteresis_margin  # STATUS: MIRRORED — dead zone around each boundary
CONFIDENCE_BASE_MARGIN = _cfg.scoring.confidence_base_margin  # STATUS: MIRRORED — CI half-width at REFERENCE_TRADES
PRIMARY_DRIVER_MIN_DRAG = _cfg.scoring.primary_driver_min_drag  # STATUS: EXPORTED — weighted drag below this → no driver
DEFAULT_BASELINE_VOLATILITY = _cfg.scoring.default_baseline_volatility  # STATUS: EXPORTED — used when backtest Sharpe ~ 0

# ── CUSUM Drift Detection ─────────────────────────────────────────────
CUSUM_ALLOWANCE_SIGMA = _cfg.drift.allowance_sigma  # STATUS: MIRRORED — k = 0.5σ
CUSUM_THRESHOLD_SIGMA = _cfg.drift.threshold_sigma  # STATUS: MIRRORED — h = 4σ
CUSUM_MIN_RETURNS = _cfg.drift.min_returns          # STATUS: EXPORTED — fewer trade returns → no drift signal

# ── Live Metric Collection ────────────────────────────────────────────
LIVE_WINDOW_DAYS = _cfg.collector.window_days       # STATUS: EXPORTED — rolling evaluation window
TRADING_DAYS_PER_YEAR = _cfg.collector.trading_days_per_year  # STATUS: EXPORTED — volatility annualisation

# ── Baseline Normalisation ────────────────────────────────────────────
DEFAULT_INITIAL_DEPOSIT = _cfg.baseline.default_initial_deposit  # STATUS: EXPORTED — used when a backtest omits it
BASELINE_NORMALIZATION_DAYS = _cfg.baseline.normalization_days   # STATUS: EXPORTED — baselines expressed per 30 days

# ── Evaluation Cadence ────────────────────────────────────────────────
HEALTH_EVAL_COOLDOWN_MS = _cfg.evaluator.eval_cooldown_ms       # STATUS: MIRRORED — evaluate_health_if_due rate limit
HEALTH_STALE_THRESHOLD_MS = _cfg.evaluator.stale_threshold_ms   # STATUS: MIRRORED — background refresh trigger

# ── Log Configuration ──────────────────────────────────────────────
LOG_LEVEL = _cfg.log.level                        # STATUS: EXPORTED — "DEBUG", "INFO", "WARNING", "ERROR"
LOG_FORMAT = _cfg.log.format                      # STATUS: EXPORTED — "structured" or "text"


def validate_config() -> List[Dict[str, str]]:
    """Check for configuration combinations that are legal but suspicious.

    Hard errors are raised by the dataclasses themselves; this returns
    advisory issues as ``{"level": ..., "message": ...}`` dicts.
    """
    cfg = _get_config()
    issues: List[Dict[str, str]] = []

    if cfg.evaluator.stale_threshold_ms > cfg.evaluator.eval_cooldown_ms:
        issues.append({
            "level": "WARNING",
            "message": (
                "HEALTH_STALE_THRESHOLD_MS exceeds HEALTH_EVAL_COOLDOWN_MS; "
                "consumers will see fresh snapshots that the cooldown already allows refreshing."
            ),
        })
    if cfg.scoring.min_trades_for_assessment >= cfg.scoring.reference_trades:
        issues.append({
            "level": "WARNING",
            "message": (
                "MIN_TRADES_FOR_ASSESSMENT >= REFERENCE_TRADES; the confidence "
                "multiplier never widens the tolerance bands."
            ),
        })
    if cfg.drift.min_returns > cfg.scoring.min_trades_for_assessment:
        issues.append({
            "level": "WARNING",
            "message": (
                "CUSUM min_returns exceeds MIN_TRADES_FOR_ASSESSMENT; assessed "
                "instances may report no drift signal."
            ),
        })
    if cfg.log.format not in ("structured", "text"):
        issues.append({
            "level": "ERROR",
            "message": f"LOG_FORMAT must be 'structured' or 'text', got {cfg.log.format!r}",
        })
    return issues
