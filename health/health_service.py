"""Strategy health evaluation orchestrator.

Thin shell around the pure scorer.  The only component with side effects:
    - collector.py         : windowed live metrics from the event store
    - baseline_extractor.py: stored baseline re-normalisation
    - health_scoring.py    : pure scoring and hysteretic status
    - health_storage.py    : snapshot persistence

Evaluation entry points:
    evaluate_health_if_due     rate-limited by HEALTH_EVAL_COOLDOWN_MS; meant
                               to be fired after each TRADE_CLOSE event
    evaluate_health            unconditional evaluation + snapshot write
    get_health_with_freshness  read path; refreshes stale snapshots in the
                               background without blocking the caller

The cooldown check is read-then-write, not a lock: two triggers inside one
cooldown window may both evaluate.  Evaluation is idempotent, so the extra
snapshot is harmless.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Set

from ..config_structured import SystemConfig, get_config
from .baseline_extractor import baseline_from_raw
from .collector import collect_live_metrics
from .errors import HealthEvaluationError, InstanceNotFoundError, InstanceOfflineError
from .event_store import TRADE_CLOSE, BaselineStore, EventStore, ensure_utc
from .health_scoring import compute_health
from .health_storage import HealthSnapshot, SnapshotStore
from .health_types import BaselineMetrics, HealthResult

logger = logging.getLogger(__name__)


@dataclass
class FreshnessResult:
    """Latest snapshot plus whether it is within the staleness threshold."""

    snapshot: Optional[HealthSnapshot]
    fresh: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(now: datetime, then: datetime) -> float:
    return (ensure_utc(now) - ensure_utc(then)).total_seconds() * 1000.0


class HealthService:
    """Evaluates and serves health for live strategy instances.

    Parameters
    ----------
    event_store : EventStore
        Instance lookup and event-log reads.
    baseline_store : BaselineStore
        Per-strategy-version backtest baselines.
    snapshot_store : SnapshotStore
        Snapshot persistence.
    config : SystemConfig, optional
        Fixed configuration.  When omitted, ``get_config()`` is read on every
        call so runtime patches apply to the next evaluation.
    clock : callable, optional
        Returns the current UTC datetime.
    """

    def __init__(
        self,
        event_store: EventStore,
        baseline_store: BaselineStore,
        snapshot_store: SnapshotStore,
        config: Optional[SystemConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._events = event_store
        self._baselines = baseline_store
        self._snapshots = snapshot_store
        self._fixed_config = config
        self._clock = clock or _utcnow
        self._background: Set[asyncio.Task] = set()

    @property
    def config(self) -> SystemConfig:
        return self._fixed_config or get_config()

    # ── Evaluation ───────────────────────────────────────────────────

    async def evaluate_health_if_due(self, instance_id: str) -> Optional[HealthResult]:
        """Evaluate unless the newest snapshot is younger than the cooldown.

        Returns None when skipped.
        """
        last = await self._snapshots.get_latest_snapshot_time(instance_id)
        if last is not None:
            elapsed = _elapsed_ms(self._clock(), last)
            if elapsed < self.config.evaluator.eval_cooldown_ms:
                logger.debug(
                    "Health evaluation for %s skipped; last snapshot %.0f ms ago",
                    instance_id, elapsed,
                )
                return None
        return await self.evaluate_health(instance_id)

    async def evaluate_health(self, instance_id: str) -> HealthResult:
        """Collect, score and persist one health snapshot.

        Raises
        ------
        InstanceNotFoundError
            Unknown instance id.
        InstanceOfflineError
            Instance status is OFFLINE; offline instances are not evaluated.
        """
        cfg = self.config
        instance = await self._events.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        if instance.status == cfg.evaluator.offline_status:
            logger.info("Instance %s is offline, skipping health evaluation", instance_id)
            raise InstanceOfflineError(instance_id)

        now = self._clock()
        live = await collect_live_metrics(
            self._events, instance_id, cfg.collector.window_days, now=now, config=cfg.collector,
        )
        baseline = await self._load_baseline(instance.strategy_version_id)
        previous = await self._snapshots.get_latest_snapshot(instance_id)

        result = compute_health(
            live,
            baseline,
            previous_status=previous.health_status if previous else None,
            config=cfg,
        )
        await self._snapshots.save_snapshot(
            HealthSnapshot.from_result(
                result, instance_id, instance.strategy_version_id, created_at=now,
            )
        )

        logger.info(
            "Health evaluated for %s: %s (score %.3f)",
            instance_id, result.status.value, result.overall_score,
            extra={"metrics": {
                "instance_id": instance_id,
                "status": result.status.value,
                "overall_score": round(result.overall_score, 4),
                "trades_sampled": live.total_trades,
                "window_days": live.window_days,
                "drift_detected": result.drift.drift_detected,
                "has_baseline": baseline is not None,
            }},
        )
        return result

    async def _load_baseline(self, strategy_version_id: Optional[str]) -> Optional[BaselineMetrics]:
        if not strategy_version_id:
            return None
        raw = await self._baselines.get_baseline(strategy_version_id)
        if raw is None:
            logger.debug("No baseline for strategy version %s", strategy_version_id)
            return None
        return baseline_from_raw(raw, config=self.config.baseline)

    # ── Read path ────────────────────────────────────────────────────

    async def get_health_with_freshness(self, instance_id: str) -> FreshnessResult:
        """Return the latest snapshot, refreshing it if missing or stale.

        With no snapshot, evaluates synchronously once; on failure returns
        ``FreshnessResult(None, False)``.  A snapshot older than
        HEALTH_STALE_THRESHOLD_MS is returned as-is with ``fresh=False`` while
        a background re-evaluation runs.
        """
        latest = await self._snapshots.get_latest_snapshot(instance_id)

        if latest is None:
            try:
                await self.evaluate_health(instance_id)
            except HealthEvaluationError as e:
                logger.info("No health available for %s: %s", instance_id, e)
                return FreshnessResult(snapshot=None, fresh=False)
            except Exception:
                logger.warning("Initial health evaluation failed for %s", instance_id, exc_info=True)
                return FreshnessResult(snapshot=None, fresh=False)
            latest = await self._snapshots.get_latest_snapshot(instance_id)
            return FreshnessResult(snapshot=latest, fresh=latest is not None)

        if _elapsed_ms(self._clock(), latest.created_at) > self.config.evaluator.stale_threshold_ms:
            self._spawn(self.evaluate_health(instance_id), instance_id)
            return FreshnessResult(snapshot=latest, fresh=False)

        return FreshnessResult(snapshot=latest, fresh=True)

    # ── Event hook ───────────────────────────────────────────────────

    def on_trade_event(self, instance_id: str, event_type: str) -> Optional[asyncio.Task]:
        """Schedule a rate-limited evaluation after an ingested event.

        Only TRADE_CLOSE events trigger evaluation.  Must be called from a
        running event loop.
        """
        if event_type != TRADE_CLOSE:
            return None
        return self._spawn(self.evaluate_health_if_due(instance_id), instance_id)

    # ── Background tasks ─────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        """Number of background evaluations still running."""
        return len(self._background)

    def _spawn(self, coro: Awaitable, instance_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_background(coro, instance_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_background(self, coro: Awaitable, instance_id: str) -> None:
        try:
            await coro
        except InstanceOfflineError:
            pass  # already logged at INFO
        except HealthEvaluationError as e:
            logger.info("Background health evaluation skipped for %s: %s", instance_id, e)
        except Exception:
            logger.warning(
                "Background health evaluation failed for %s", instance_id, exc_info=True,
            )

    async def wait_for_background(self) -> None:
        """Wait for in-flight background evaluations (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
