"""
Strategy health: live-vs-backtest comparison, CUSUM drift, hysteretic status.

Pure core:
    health_scoring.compute_health, drift_detector.compute_cusum,
    baseline_extractor.extract_baseline_metrics
Effectful shell:
    collector.collect_live_metrics, health_service.HealthService
"""
from .baseline_extractor import (
    BacktestResultSummary,
    BaselineExtraction,
    BaselineRaw,
    baseline_from_raw,
    estimate_backtest_duration,
    extract_baseline_metrics,
)
from .collector import collect_live_metrics
from .drift_detector import compute_cusum, compute_trade_returns
from .errors import HealthEvaluationError, InstanceNotFoundError, InstanceOfflineError
from .health_scoring import compute_health, determine_status
from .health_service import FreshnessResult, HealthService
from .health_storage import HealthSnapshot, InMemorySnapshotStore, SqliteSnapshotStore
from .health_types import (
    BaselineMetrics,
    ConfidenceInterval,
    CusumResult,
    DriftInfo,
    HealthResult,
    HealthStatus,
    LiveMetrics,
    MetricScore,
)

__all__ = [
    "BacktestResultSummary",
    "BaselineExtraction",
    "BaselineMetrics",
    "BaselineRaw",
    "ConfidenceInterval",
    "CusumResult",
    "DriftInfo",
    "FreshnessResult",
    "HealthEvaluationError",
    "HealthResult",
    "HealthService",
    "HealthSnapshot",
    "HealthStatus",
    "InMemorySnapshotStore",
    "InstanceNotFoundError",
    "InstanceOfflineError",
    "LiveMetrics",
    "MetricScore",
    "SqliteSnapshotStore",
    "baseline_from_raw",
    "collect_live_metrics",
    "compute_cusum",
    "compute_health",
    "compute_trade_returns",
    "determine_status",
    "estimate_backtest_duration",
    "extract_baseline_metrics",
]
