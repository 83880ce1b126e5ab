"""
Structured configuration for strategy health monitoring using typed dataclasses.

This is the AUTHORITATIVE source of truth for all configuration values.
``config.py`` imports from here for backward compatibility.

Provides IDE autocomplete, type checking, and organized namespacing.
Each subsystem gets its own dataclass.

Usage:
    from strategy_health.config_structured import get_config
    cfg = get_config()
    cfg.scoring.reference_trades          # IDE knows the type
    cfg.scoring.thresholds["drawdown"]    # per-metric tolerance bands
    cfg.evaluator.eval_cooldown_ms        # rate limit between evaluations

Overrides are read from ``config_data/health.yaml`` on first access.  Only
keys that exist on the dataclasses are accepted; anything else raises
``ConfigError`` so a typo cannot silently fall back to a default.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_OVERRIDES_PATH = Path(__file__).parent / "config_data" / "health.yaml"

METRIC_NAMES = ("return", "volatility", "drawdown", "winRate", "tradeFrequency")


class ConfigError(Exception):
    """Raised when health.yaml is malformed or a value fails validation."""


# ── Scoring ──────────────────────────────────────────────────────────


@dataclass
class MetricThresholdConfig:
    """Tolerance band for one metric.

    ``tolerance``, ``warning`` and ``alarm`` are relative deviations from the
    baseline value.  Deviation up to ``tolerance`` scores 1.0, ``warning``
    maps to 0.5, ``alarm`` and beyond to 0.0.
    """

    weight: float
    tolerance: float
    warning: float
    alarm: float
    higher_is_better: bool

    def __post_init__(self):
        if self.weight < 0:
            raise ConfigError(f"Metric weight must be non-negative, got {self.weight}")
        if not 0 <= self.tolerance < self.warning < self.alarm:
            raise ConfigError(
                "Metric bands must satisfy 0 <= tolerance < warning < alarm, got "
                f"{self.tolerance}/{self.warning}/{self.alarm}"
            )


def _default_thresholds() -> Dict[str, MetricThresholdConfig]:
    return {
        "return": MetricThresholdConfig(
            weight=0.25, tolerance=0.30, warning=0.50, alarm=0.75, higher_is_better=True,
        ),
        "volatility": MetricThresholdConfig(
            weight=0.15, tolerance=0.30, warning=0.60, alarm=1.00, higher_is_better=False,
        ),
        "drawdown": MetricThresholdConfig(
            weight=0.25, tolerance=0.25, warning=0.50, alarm=1.00, higher_is_better=False,
        ),
        "winRate": MetricThresholdConfig(
            weight=0.20, tolerance=0.10, warning=0.20, alarm=0.35, higher_is_better=True,
        ),
        "tradeFrequency": MetricThresholdConfig(
            weight=0.15, tolerance=0.30, warning=0.50, alarm=0.80, higher_is_better=True,
        ),
    }


@dataclass
class ScoringConfig:
    """Health scorer thresholds, sample-size scaling and hysteresis."""

    thresholds: Dict[str, MetricThresholdConfig] = field(default_factory=_default_thresholds)
    reference_trades: int = 100
    min_trades_for_assessment: int = 10
    min_days_for_assessment: int = 7
    healthy_threshold: float = 0.70
    warning_threshold: float = 0.40
    hysteresis_margin: float = 0.05
    confidence_base_margin: float = 0.10
    primary_driver_min_drag: float = 0.01
    # Baseline volatility used when the backtest Sharpe is ~0
    default_baseline_volatility: float = 0.20
    min_sharpe_for_volatility: float = 0.01

    def __post_init__(self):
        # YAML overrides arrive as plain dicts
        self.thresholds = {
            name: (MetricThresholdConfig(**t) if isinstance(t, dict) else t)
            for name, t in self.thresholds.items()
        }
        missing = set(METRIC_NAMES) - set(self.thresholds)
        if missing:
            raise ConfigError(f"Missing metric thresholds: {sorted(missing)}")
        total = sum(t.weight for t in self.thresholds.values())
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ConfigError(f"Metric weights must sum to 1.0, got {total:.6f}")
        if self.reference_trades < 1:
            raise ConfigError(f"reference_trades must be >= 1, got {self.reference_trades}")
        if not 0.0 < self.warning_threshold < self.healthy_threshold <= 1.0:
            raise ConfigError(
                "Status thresholds must satisfy 0 < warning < healthy <= 1, got "
                f"{self.warning_threshold}/{self.healthy_threshold}"
            )
        if not 0.0 <= self.hysteresis_margin < self.warning_threshold:
            raise ConfigError(
                f"hysteresis_margin must be in [0, warning_threshold), got {self.hysteresis_margin}"
            )


# ── Drift detection ──────────────────────────────────────────────────


@dataclass
class DriftConfig:
    """One-sided lower CUSUM parameters, in units of the return stdev."""

    allowance_sigma: float = 0.5   # k
    threshold_sigma: float = 4.0   # h; ARL0 of roughly 100+ trades at k=0.5
    min_returns: int = 5
    min_threshold: float = 0.001   # severity denominator floor

    def __post_init__(self):
        if self.allowance_sigma < 0 or self.threshold_sigma <= 0:
            raise ConfigError(
                f"CUSUM multipliers must be positive, got k={self.allowance_sigma}, "
                f"h={self.threshold_sigma}"
            )


# ── Collection / baseline ────────────────────────────────────────────


@dataclass
class CollectorConfig:
    """Live-metric window and annualisation."""

    window_days: int = 30
    trading_days_per_year: int = 252
    min_start_balance: float = 1.0

    def __post_init__(self):
        if self.window_days < 1:
            raise ConfigError(f"window_days must be >= 1, got {self.window_days}")


@dataclass
class BaselineConfig:
    """Backtest normalisation defaults."""

    default_initial_deposit: float = 10_000.0
    normalization_days: int = 30
    assumed_trades_per_day: float = 2.0
    min_duration_days: int = 30
    default_duration_days: int = 90


# ── Evaluation / storage / logging ───────────────────────────────────


@dataclass
class EvaluatorConfig:
    """Evaluation cadence."""

    eval_cooldown_ms: int = 60 * 60 * 1000        # 1 hour
    stale_threshold_ms: int = 15 * 60 * 1000      # 15 minutes
    offline_status: str = "OFFLINE"

    def __post_init__(self):
        if self.eval_cooldown_ms < 0 or self.stale_threshold_ms < 0:
            raise ConfigError("Evaluator intervals must be non-negative")


@dataclass
class StorageConfig:
    """SQLite locations for the event and snapshot stores."""

    db_path: str = "strategy_health.db"
    timeout_seconds: float = 5.0
    history_limit: int = 90
    # Slope of overall score per snapshot (0–1 scale) for trend labels
    trend_improving_threshold: float = 0.005
    trend_degrading_threshold: float = -0.005


@dataclass
class LogConfig:
    """Logging verbosity and format."""

    level: str = "INFO"
    format: str = "structured"  # "structured" (JSON lines) or "text"


@dataclass
class SystemConfig:
    """Top-level configuration aggregating all subsystems.

    Provides a single entry point with IDE autocomplete for all config
    domains. Each subsystem is a typed dataclass.
    """

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    drift: DriftConfig = field(default_factory=DriftConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    baseline: BaselineConfig = field(default_factory=BaselineConfig)
    evaluator: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)


# ── YAML overrides ───────────────────────────────────────────────────


_SECTION_TYPES = {
    "scoring": ScoringConfig,
    "drift": DriftConfig,
    "collector": CollectorConfig,
    "baseline": BaselineConfig,
    "evaluator": EvaluatorConfig,
    "storage": StorageConfig,
    "log": LogConfig,
}


def _build_section(cls, values: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}': {sorted(unknown)}")
    return cls(**values)


def load_config_overrides(path: Optional[Path] = None) -> SystemConfig:
    """Build a SystemConfig with values from a health.yaml file applied.

    A missing file yields the defaults.  Per-metric thresholds may be given
    partially; unspecified fields keep their default values.
    """
    path = Path(path) if path is not None else DEFAULT_OVERRIDES_PATH
    if not path.exists():
        return SystemConfig()

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path.name}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path.name} must be a YAML mapping at the top level.")

    unknown = set(raw) - set(_SECTION_TYPES)
    if unknown:
        raise ConfigError(f"Unknown sections in {path.name}: {sorted(unknown)}")

    kwargs: Dict[str, Any] = {}
    for name, values in raw.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Section '{name}' must be a mapping")
        section_cls = _SECTION_TYPES[name]
        if section_cls is ScoringConfig and "thresholds" in values:
            merged = _default_thresholds()
            for metric, band in (values.get("thresholds") or {}).items():
                if metric not in merged:
                    raise ConfigError(f"Unknown metric '{metric}' in scoring.thresholds")
                current = {f.name: getattr(merged[metric], f.name) for f in fields(MetricThresholdConfig)}
                current.update(band or {})
                merged[metric] = _build_section(MetricThresholdConfig, current, f"thresholds.{metric}")
            values = {**values, "thresholds": merged}
        kwargs[name] = _build_section(section_cls, values, name)

    logger.info("Loaded health config overrides from %s", path)
    return SystemConfig(**kwargs)


def config_to_dict(cfg: Any) -> Dict[str, Any]:
    """Recursively convert a config dataclass into plain Python types."""
    if is_dataclass(cfg):
        return {f.name: config_to_dict(getattr(cfg, f.name)) for f in fields(cfg)}
    if isinstance(cfg, dict):
        return {k: config_to_dict(v) for k, v in cfg.items()}
    return cfg


# ── Module-level singleton ──────────────────────────────────────────

_CONFIG: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Return the singleton SystemConfig instance.

    On first call, builds the config from defaults plus
    ``config_data/health.yaml``.  Subsequent calls return the same instance
    so all callers share one source of truth.
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config_overrides()
    return _CONFIG


def reset_config(cfg: Optional[SystemConfig] = None) -> None:
    """Replace (or drop) the singleton.  Used by tests and RuntimeConfig."""
    global _CONFIG
    _CONFIG = cfg
