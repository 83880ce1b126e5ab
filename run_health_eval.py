#!/usr/bin/env python3
"""
Evaluate and inspect strategy health against a SQLite event/snapshot database.

Usage:
    python3 run_health_eval.py evaluate INSTANCE_ID            # Evaluate if cooldown elapsed
    python3 run_health_eval.py evaluate INSTANCE_ID --force    # Evaluate regardless of cooldown
    python3 run_health_eval.py status INSTANCE_ID              # Latest snapshot + freshness
    python3 run_health_eval.py history INSTANCE_ID --limit 30  # Snapshot history with trend
    python3 run_health_eval.py extract-baseline result.json --strategy-version V1

Database path, log level and format come from health.yaml (or --config),
overridden by STRATEGY_HEALTH_* environment variables and then by the
command-line flags (see health/runtime_config.py).
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from strategy_health.config import validate_config
from strategy_health.config_structured import StorageConfig, reset_config
from strategy_health.health.baseline_extractor import (
    BacktestResultSummary,
    estimate_backtest_duration,
    extract_baseline_metrics,
)
from strategy_health.health.errors import InstanceNotFoundError, InstanceOfflineError
from strategy_health.health.event_store import SqliteEventStore
from strategy_health.health.health_service import HealthService
from strategy_health.health.health_storage import SqliteSnapshotStore, get_history_with_trends
from strategy_health.health.runtime_config import HealthSettings
from strategy_health.utils.logging import configure_logging

logger = logging.getLogger("strategy_health.cli")

EXIT_NOT_FOUND = 2
EXIT_OFFLINE = 3


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _evaluate(service: HealthService, args) -> int:
    if args.force:
        result = await service.evaluate_health(args.instance_id)
    else:
        result = await service.evaluate_health_if_due(args.instance_id)
        if result is None:
            _print({"instance_id": args.instance_id, "skipped": "cooldown"})
            return 0
    _print(result.to_dict())
    return 0


async def _status(service: HealthService, args) -> int:
    freshness = await service.get_health_with_freshness(args.instance_id)
    _print({
        "instance_id": args.instance_id,
        "fresh": freshness.fresh,
        "snapshot": freshness.snapshot.to_dict() if freshness.snapshot else None,
    })
    # Let a stale-snapshot refresh finish before the loop closes
    await service.wait_for_background()
    return 0


async def _history(snapshots: SqliteSnapshotStore, args) -> int:
    _print(await get_history_with_trends(snapshots, args.instance_id, limit=args.limit))
    return 0


async def _extract_baseline(events: SqliteEventStore, args) -> int:
    with open(args.backtest_json, "r") as f:
        summary = BacktestResultSummary.from_dict(json.load(f))
    duration = args.duration_days or estimate_backtest_duration(summary)
    extraction = extract_baseline_metrics(summary, duration)
    await events.save_baseline(args.strategy_version, extraction.raw)
    _print({
        "strategy_version_id": args.strategy_version,
        "duration_days": duration,
        "metrics": extraction.metrics.to_dict(),
        "raw": extraction.raw.to_dict(),
    })
    return 0


async def _run(args, storage: StorageConfig) -> int:
    events = SqliteEventStore(storage.db_path, timeout=storage.timeout_seconds)
    snapshots = SqliteSnapshotStore(storage.db_path, timeout=storage.timeout_seconds)
    await events.initialize()
    await snapshots.initialize()
    service = HealthService(events, events, snapshots)
    try:
        if args.command == "evaluate":
            return await _evaluate(service, args)
        if args.command == "status":
            return await _status(service, args)
        if args.command == "history":
            return await _history(snapshots, args)
        return await _extract_baseline(events, args)
    except InstanceNotFoundError as e:
        logger.error("%s", e)
        return EXIT_NOT_FOUND
    except InstanceOfflineError as e:
        logger.info("%s", e)
        return EXIT_OFFLINE
    finally:
        await events.close()
        await snapshots.close()


def main(argv=None) -> int:
    """Parse arguments, apply settings, and run one health command."""
    parser = argparse.ArgumentParser(description="Strategy health monitoring")
    parser.add_argument("--db", type=str, help="SQLite database path")
    parser.add_argument("--config", type=str, help="health.yaml override file")
    parser.add_argument("--log-level", type=str, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-format", choices=("structured", "text"), help="Log output format")
    sub = parser.add_subparsers(dest="command", required=True)

    p_eval = sub.add_parser("evaluate", help="Evaluate one instance")
    p_eval.add_argument("instance_id")
    p_eval.add_argument("--force", action="store_true", help="Ignore the evaluation cooldown")

    p_status = sub.add_parser("status", help="Latest snapshot with freshness")
    p_status.add_argument("instance_id")

    p_hist = sub.add_parser("history", help="Snapshot history with rolling averages and trend")
    p_hist.add_argument("instance_id")
    p_hist.add_argument("--limit", type=int, default=None, help="Max snapshots to return")

    p_base = sub.add_parser("extract-baseline", help="Store a baseline from a backtest result JSON")
    p_base.add_argument("backtest_json", type=Path)
    p_base.add_argument("--strategy-version", required=True, help="Strategy version id")
    p_base.add_argument("--duration-days", type=float, default=None,
                        help="Backtest length in days (estimated from trade count if omitted)")

    args = parser.parse_args(argv)

    overrides = {}
    if args.db:
        overrides["db_path"] = args.db
    if args.config:
        overrides["config_path"] = args.config
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    settings = HealthSettings(**overrides)

    cfg = settings.build_config()
    configure_logging(cfg.log.level, cfg.log.format)
    reset_config(cfg)
    for issue in validate_config():
        logger.warning("Config %s: %s", issue["level"], issue["message"])

    return asyncio.run(_run(args, cfg.storage))


if __name__ == "__main__":
    sys.exit(main())
