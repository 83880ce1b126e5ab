"""Snapshot persistence (SQLite + in-memory) and trend helpers."""
from __future__ import annotations

from datetime import timedelta

import pytest

from strategy_health.health.health_scoring import compute_health
from strategy_health.health.health_storage import (
    HealthSnapshot,
    InMemorySnapshotStore,
    SqliteSnapshotStore,
    compute_rolling_average,
    detect_trend,
    get_history_with_trends,
)
from strategy_health.health.health_types import HealthStatus, LiveMetrics


@pytest.fixture
async def sqlite_store():
    store = SqliteSnapshotStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, sqlite_store):
    if request.param == "memory":
        return InMemorySnapshotStore()
    return sqlite_store


def _snapshot(result, at, minutes=0, instance_id="inst-1"):
    return HealthSnapshot.from_result(
        result, instance_id, "v1", created_at=at + timedelta(minutes=minutes),
    )


class TestFromResult:
    def test_flattens_result(self, matching_live, baseline, now):
        result = compute_health(matching_live, baseline)
        snap = _snapshot(result, now)
        assert snap.status == "HEALTHY"
        assert snap.health_status == HealthStatus.HEALTHY
        assert snap.win_rate_score == result.metrics["winRate"].score
        assert snap.trade_frequency_score == result.metrics["tradeFrequency"].score
        assert snap.live_max_drawdown_pct == 8.0
        assert snap.baseline_volatility == pytest.approx(5.0 / 1.2 / 100)
        assert snap.baseline_sharpe_ratio == 1.2
        assert snap.trades_sampled == 60
        assert snap.window_days == 30
        assert snap.to_dict()["created_at"].endswith("Z")

    def test_without_baseline(self, matching_live, now):
        snap = _snapshot(compute_health(matching_live, None), now)
        assert snap.baseline_return_pct is None
        assert snap.baseline_volatility is None


@pytest.mark.asyncio
class TestSnapshotStores:
    async def test_empty(self, store):
        assert await store.get_latest_snapshot("inst-1") is None
        assert await store.get_latest_snapshot_time("inst-1") is None
        assert await store.get_history("inst-1") == []

    async def test_round_trip(self, store, poor_live, baseline, now):
        result = compute_health(poor_live, baseline)
        saved = await store.save_snapshot(_snapshot(result, now))
        assert saved.id is not None
        latest = await store.get_latest_snapshot("inst-1")
        assert latest.status == "DEGRADED"
        assert latest.overall_score == pytest.approx(result.overall_score)
        assert latest.drift_detected is False
        assert latest.primary_driver == result.primary_driver
        assert latest.created_at == now

    async def test_latest_and_history_order(self, store, matching_live, poor_live, baseline, now):
        good = compute_health(matching_live, baseline)
        bad = compute_health(poor_live, baseline)
        await store.save_snapshot(_snapshot(good, now, minutes=0))
        await store.save_snapshot(_snapshot(bad, now, minutes=30))
        await store.save_snapshot(_snapshot(good, now, minutes=60, instance_id="other"))

        latest = await store.get_latest_snapshot("inst-1")
        assert latest.status == "DEGRADED"
        assert await store.get_latest_snapshot_time("inst-1") == now + timedelta(minutes=30)

        history = await store.get_history("inst-1")
        assert [s.status for s in history] == ["HEALTHY", "DEGRADED"]
        assert len(await store.get_history("inst-1", limit=1)) == 1


class TestTrends:
    def test_rolling_average(self):
        assert compute_rolling_average([1.0, 2.0, 3.0, 4.0], window=2) == pytest.approx(
            [1.0, 1.5, 2.5, 3.5]
        )

    def test_rolling_average_short_series(self):
        assert compute_rolling_average([0.5, 0.7], window=7) == pytest.approx([0.5, 0.6])
        assert compute_rolling_average([], window=7) == []

    @pytest.mark.parametrize("scores,label", [
        ([0.5, 0.6, 0.7, 0.8], "improving"),
        ([0.8, 0.7, 0.6, 0.5], "degrading"),
        ([0.7, 0.7, 0.7, 0.7], "stable"),
        ([0.7, 0.8], "unknown"),
    ])
    def test_detect_trend(self, scores, label):
        assert detect_trend(scores)[0] == label


@pytest.mark.asyncio
class TestHistoryWithTrends:
    async def test_excludes_insufficient_data_from_averages(self, matching_live, baseline, now):
        store = InMemorySnapshotStore()
        good = compute_health(matching_live, baseline)
        thin = compute_health(
            LiveMetrics(total_trades=2, window_days=30), baseline,
        )
        await store.save_snapshot(_snapshot(thin, now, minutes=0))
        for i in range(1, 4):
            await store.save_snapshot(_snapshot(good, now, minutes=i))

        out = await get_history_with_trends(store, "inst-1")
        assert len(out["snapshots"]) == 4
        assert out["rolling_7"] == pytest.approx([1.0, 1.0, 1.0])
        assert out["trend"] == "stable"

    async def test_empty_history(self):
        out = await get_history_with_trends(InMemorySnapshotStore(), "inst-1")
        assert out["trend"] == "unknown"
        assert out["snapshots"] == []
