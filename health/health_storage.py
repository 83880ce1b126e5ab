"""Health snapshot storage: persistence, retrieval, and trends.

Every evaluation writes one immutable ``HealthSnapshot`` row holding the
flattened ``HealthResult`` plus sample size and window.  The evaluator reads
back only the newest row (cooldown, staleness, previous status); history and
trend helpers serve tooling and downstream consumers.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import aiosqlite
import numpy as np

from ..config_structured import StorageConfig, get_config
from .event_store import from_iso, to_iso
from .health_types import HealthResult, HealthStatus

logger = logging.getLogger(__name__)


@dataclass
class HealthSnapshot:
    """Persisted, flattened health result."""

    instance_id: str
    strategy_version_id: Optional[str]
    status: str
    overall_score: float
    ci_lower: float
    ci_upper: float
    cusum_value: float
    drift_detected: bool
    drift_severity: float
    primary_driver: Optional[str]
    return_score: float
    volatility_score: float
    drawdown_score: float
    win_rate_score: float
    trade_frequency_score: float
    live_return_pct: float
    live_volatility: float
    live_max_drawdown_pct: float
    live_win_rate: float
    live_trades_per_day: float
    baseline_return_pct: Optional[float]
    baseline_volatility: Optional[float]
    baseline_max_dd_pct: Optional[float]
    baseline_win_rate: Optional[float]
    baseline_trades_per_day: Optional[float]
    baseline_sharpe_ratio: Optional[float]
    trades_sampled: int
    window_days: int
    created_at: datetime
    id: Optional[int] = None

    @property
    def health_status(self) -> HealthStatus:
        return HealthStatus(self.status)

    @classmethod
    def from_result(
        cls,
        result: HealthResult,
        instance_id: str,
        strategy_version_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "HealthSnapshot":
        m = result.metrics
        live = result.live
        baseline = result.baseline
        return cls(
            instance_id=instance_id,
            strategy_version_id=strategy_version_id,
            status=result.status.value,
            overall_score=result.overall_score,
            ci_lower=result.confidence_interval.lower,
            ci_upper=result.confidence_interval.upper,
            cusum_value=result.drift.cusum_value,
            drift_detected=result.drift.drift_detected,
            drift_severity=result.drift.drift_severity,
            primary_driver=result.primary_driver,
            return_score=m["return"].score,
            volatility_score=m["volatility"].score,
            drawdown_score=m["drawdown"].score,
            win_rate_score=m["winRate"].score,
            trade_frequency_score=m["tradeFrequency"].score,
            live_return_pct=live.return_pct,
            live_volatility=live.volatility,
            live_max_drawdown_pct=live.max_drawdown_pct,
            live_win_rate=live.win_rate,
            live_trades_per_day=live.trades_per_day,
            baseline_return_pct=baseline.return_pct if baseline else None,
            baseline_volatility=m["volatility"].baseline_value if baseline else None,
            baseline_max_dd_pct=baseline.max_drawdown_pct if baseline else None,
            baseline_win_rate=baseline.win_rate if baseline else None,
            baseline_trades_per_day=baseline.trades_per_day if baseline else None,
            baseline_sharpe_ratio=baseline.sharpe_ratio if baseline else None,
            trades_sampled=live.total_trades,
            window_days=live.window_days,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = to_iso(self.created_at)
        return d


_COLUMNS = [f.name for f in fields(HealthSnapshot) if f.name != "id"]


@runtime_checkable
class SnapshotStore(Protocol):
    async def save_snapshot(self, snapshot: HealthSnapshot) -> HealthSnapshot: ...

    async def get_latest_snapshot(self, instance_id: str) -> Optional[HealthSnapshot]: ...

    async def get_latest_snapshot_time(self, instance_id: str) -> Optional[datetime]: ...

    async def get_history(self, instance_id: str, limit: int = 90) -> List[HealthSnapshot]: ...


class InMemorySnapshotStore:
    """List-backed SnapshotStore for tests and embedding."""

    def __init__(self) -> None:
        self.snapshots: List[HealthSnapshot] = []

    async def save_snapshot(self, snapshot: HealthSnapshot) -> HealthSnapshot:
        snapshot.id = len(self.snapshots) + 1
        self.snapshots.append(snapshot)
        return snapshot

    def _for(self, instance_id: str) -> List[HealthSnapshot]:
        rows = [s for s in self.snapshots if s.instance_id == instance_id]
        return sorted(rows, key=lambda s: (s.created_at, s.id or 0))

    async def get_latest_snapshot(self, instance_id: str) -> Optional[HealthSnapshot]:
        rows = self._for(instance_id)
        return rows[-1] if rows else None

    async def get_latest_snapshot_time(self, instance_id: str) -> Optional[datetime]:
        latest = await self.get_latest_snapshot(instance_id)
        return latest.created_at if latest else None

    async def get_history(self, instance_id: str, limit: int = 90) -> List[HealthSnapshot]:
        return self._for(instance_id)[-limit:]


class SqliteSnapshotStore:
    """Async SQLite SnapshotStore (``health_snapshots`` table)."""

    def __init__(self, db_path: str = "strategy_health.db", timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the health_snapshots table if it doesn't exist."""
        self._db = await aiosqlite.connect(self.db_path, timeout=self.timeout)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS health_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL,
                strategy_version_id TEXT,
                status TEXT NOT NULL,
                overall_score REAL NOT NULL,
                ci_lower REAL NOT NULL,
                ci_upper REAL NOT NULL,
                cusum_value REAL NOT NULL DEFAULT 0.0,
                drift_detected INTEGER NOT NULL DEFAULT 0,
                drift_severity REAL NOT NULL DEFAULT 0.0,
                primary_driver TEXT,
                return_score REAL NOT NULL,
                volatility_score REAL NOT NULL,
                drawdown_score REAL NOT NULL,
                win_rate_score REAL NOT NULL,
                trade_frequency_score REAL NOT NULL,
                live_return_pct REAL NOT NULL,
                live_volatility REAL NOT NULL,
                live_max_drawdown_pct REAL NOT NULL,
                live_win_rate REAL NOT NULL,
                live_trades_per_day REAL NOT NULL,
                baseline_return_pct REAL,
                baseline_volatility REAL,
                baseline_max_dd_pct REAL,
                baseline_win_rate REAL,
                baseline_trades_per_day REAL,
                baseline_sharpe_ratio REAL,
                trades_sampled INTEGER NOT NULL,
                window_days INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_snapshots_instance_created "
            "ON health_snapshots (instance_id, created_at)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    async def save_snapshot(self, snapshot: HealthSnapshot) -> HealthSnapshot:
        values = []
        for name in _COLUMNS:
            value = getattr(snapshot, name)
            if name == "created_at":
                value = to_iso(value)
            elif name == "drift_detected":
                value = int(bool(value))
            values.append(value)
        db = await self._conn()
        cur = await db.execute(
            f"INSERT INTO health_snapshots ({', '.join(_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
            values,
        )
        await db.commit()
        snapshot.id = cur.lastrowid
        await cur.close()
        return snapshot

    async def get_latest_snapshot(self, instance_id: str) -> Optional[HealthSnapshot]:
        rows = await self._select(
            "WHERE instance_id = ? ORDER BY created_at DESC, id DESC LIMIT 1", (instance_id,),
        )
        return rows[0] if rows else None

    async def get_latest_snapshot_time(self, instance_id: str) -> Optional[datetime]:
        db = await self._conn()
        async with db.execute(
            "SELECT MAX(created_at) FROM health_snapshots WHERE instance_id = ?", (instance_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None or row[0] is None:
            return None
        return from_iso(row[0])

    async def get_history(self, instance_id: str, limit: int = 90) -> List[HealthSnapshot]:
        """Most recent ``limit`` snapshots, oldest first."""
        rows = await self._select(
            "WHERE instance_id = ? ORDER BY created_at DESC, id DESC LIMIT ?", (instance_id, limit),
        )
        return list(reversed(rows))

    async def _select(self, clause: str, params: tuple) -> List[HealthSnapshot]:
        db = await self._conn()
        async with db.execute(
            f"SELECT id, {', '.join(_COLUMNS)} FROM health_snapshots {clause}", params,
        ) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_snapshot(r, desc) for r in rows]

    @staticmethod
    def _row_to_snapshot(row, description) -> HealthSnapshot:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d["created_at"] = from_iso(d["created_at"])
        d["drift_detected"] = bool(d["drift_detected"])
        return HealthSnapshot(**d)


# ── Trends ───────────────────────────────────────────────────────────


def compute_rolling_average(
    scores: List[float],
    window: int = 7,
) -> List[float]:
    """Compute rolling average of health scores."""
    if not scores:
        return []
    arr = np.array(scores, dtype=float)
    if len(arr) < window:
        window = len(arr)
    if window <= 0:
        return scores
    cumsum = np.insert(np.cumsum(arr), 0, 0.0)
    rolling = (cumsum[window:] - cumsum[:-window]) / window
    # Pad front with partial averages
    pad = [float(np.mean(arr[:i + 1])) for i in range(window - 1)]
    return pad + rolling.tolist()


def detect_trend(
    scores: List[float],
    window: int = 30,
    config: Optional[StorageConfig] = None,
) -> Tuple[str, float]:
    """Detect health score trend using linear regression.

    Returns
    -------
    (trend_label, slope)
        ``trend_label`` is one of improving, stable, degrading, unknown
        (fewer than 3 scores).
    """
    if len(scores) < 3:
        return ("unknown", 0.0)

    cfg = config or get_config().storage
    recent = scores[-window:]
    x = np.arange(len(recent), dtype=float)
    slope = float(np.polyfit(x, recent, 1)[0])

    if slope > cfg.trend_improving_threshold:
        trend = "improving"
    elif slope < cfg.trend_degrading_threshold:
        trend = "degrading"
    else:
        trend = "stable"
    return (trend, slope)


async def get_history_with_trends(
    store: SnapshotStore,
    instance_id: str,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Snapshot history with 7/30-snapshot rolling averages and a trend label.

    INSUFFICIENT_DATA snapshots are listed but excluded from the averages,
    since their score of 0 is not a health signal.
    """
    limit = limit or get_config().storage.history_limit
    history = await store.get_history(instance_id, limit=limit)
    if not history:
        return {
            "snapshots": [],
            "rolling_7": [],
            "rolling_30": [],
            "trend": "unknown",
            "trend_slope": 0.0,
        }

    scores = [
        s.overall_score for s in history
        if s.status != HealthStatus.INSUFFICIENT_DATA.value
    ]
    trend, slope = detect_trend(scores, window=30)
    return {
        "snapshots": [s.to_dict() for s in history],
        "rolling_7": [round(v, 3) for v in compute_rolling_average(scores, window=7)],
        "rolling_30": [round(v, 3) for v in compute_rolling_average(scores, window=30)],
        "trend": trend,
        "trend_slope": round(slope, 5),
    }
