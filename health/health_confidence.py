"""Sample-size scaling for health scores.

Two related quantities, both driven by the number of live trades N:

    confidence_multiplier(N) = max(1, sqrt(REFERENCE_TRADES / N))
        Widens each metric's tolerance bands when the live sample is thin.
        N=10 -> 3.16, N=30 -> 1.83, N=100 -> 1.00, N=500 -> 1.00 (never tightens).

    margin(N) = CONFIDENCE_BASE_MARGIN * sqrt(REFERENCE_TRADES / N)
        Half-width of the interval reported around the overall score.
        N=10 -> 0.316, N=100 -> 0.10, N=500 -> 0.045.
"""
from __future__ import annotations

import math
from typing import Optional

from ..config_structured import ScoringConfig, get_config
from .health_types import ConfidenceInterval


def confidence_multiplier(total_trades: int, config: Optional[ScoringConfig] = None) -> float:
    cfg = config or get_config().scoring
    if total_trades >= cfg.reference_trades:
        return 1.0
    return math.sqrt(cfg.reference_trades / max(total_trades, 1))


def compute_confidence_interval(
    overall_score: float,
    total_trades: int,
    config: Optional[ScoringConfig] = None,
) -> ConfidenceInterval:
    """Symmetric interval around ``overall_score`` clipped to [0, 1]."""
    cfg = config or get_config().scoring
    margin = cfg.confidence_base_margin * math.sqrt(cfg.reference_trades / max(total_trades, 1))
    return ConfidenceInterval(
        lower=max(0.0, overall_score - margin),
        upper=min(1.0, overall_score + margin),
    )
