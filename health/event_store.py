"""Read contracts for the live event log and the baseline store.

The health engine only queries these stores; it never mutates the event log.
``SqliteEventStore`` is the aiosqlite-backed implementation (its ``add_*`` /
``append_*`` helpers exist for seeding and tooling).  ``InMemoryEventStore``
implements both protocols for tests and embedding.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, runtime_checkable

import aiosqlite

from .baseline_extractor import BaselineRaw

logger = logging.getLogger(__name__)

TRADE_CLOSE = "TRADE_CLOSE"
CASHFLOW = "CASHFLOW"
DEPOSIT = "DEPOSIT"
WITHDRAWAL = "WITHDRAWAL"


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_iso(ts: datetime) -> str:
    # Fixed-width so that lexical order in SQLite matches time order
    return ensure_utc(ts).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_iso(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


# ── Records ──────────────────────────────────────────────────────────


@dataclass
class LiveInstance:
    id: str
    strategy_version_id: Optional[str] = None
    status: str = "ONLINE"


@dataclass
class InstanceState:
    """Running track-record state of an instance."""

    balance: float
    equity: float = 0.0
    high_water_mark: float = 0.0
    max_drawdown_pct: float = 0.0
    total_trades: int = 0
    win_count: int = 0
    loss_count: int = 0


@dataclass
class TradeCloseEvent:
    timestamp: datetime
    profit: float = 0.0
    swap: float = 0.0
    commission: float = 0.0

    @property
    def net_pnl(self) -> float:
        return self.profit + self.swap + self.commission

    def to_payload(self) -> Dict[str, float]:
        return {"profit": self.profit, "swap": self.swap, "commission": self.commission}

    @classmethod
    def from_payload(cls, timestamp: datetime, payload: Dict) -> "TradeCloseEvent":
        return cls(
            timestamp=timestamp,
            profit=float(payload.get("profit") or 0),
            swap=float(payload.get("swap") or 0),
            commission=float(payload.get("commission") or 0),
        )


@dataclass
class CashflowEvent:
    timestamp: datetime
    amount: float
    type: str = DEPOSIT  # DEPOSIT or WITHDRAWAL

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == DEPOSIT else -self.amount

    def to_payload(self) -> Dict:
        return {"amount": self.amount, "type": self.type}

    @classmethod
    def from_payload(cls, timestamp: datetime, payload: Dict) -> "CashflowEvent":
        return cls(
            timestamp=timestamp,
            amount=float(payload.get("amount") or 0),
            type=str(payload.get("type") or ""),
        )


# ── Protocols ────────────────────────────────────────────────────────


@runtime_checkable
class EventStore(Protocol):
    async def get_instance(self, instance_id: str) -> Optional[LiveInstance]: ...

    async def get_state(self, instance_id: str) -> Optional[InstanceState]: ...

    async def get_trade_close_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[TradeCloseEvent]: ...

    async def get_cashflow_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[CashflowEvent]: ...


@runtime_checkable
class BaselineStore(Protocol):
    async def get_baseline(self, strategy_version_id: str) -> Optional[BaselineRaw]: ...


# ── In-memory implementation ─────────────────────────────────────────


def _in_window(ts: datetime, since: datetime, until: Optional[datetime]) -> bool:
    ts = ensure_utc(ts)
    if ts < ensure_utc(since):
        return False
    return until is None or ts <= ensure_utc(until)


class InMemoryEventStore:
    """Dict-backed EventStore + BaselineStore."""

    def __init__(self) -> None:
        self.instances: Dict[str, LiveInstance] = {}
        self.states: Dict[str, InstanceState] = {}
        self.trades: Dict[str, List[TradeCloseEvent]] = {}
        self.cashflows: Dict[str, List[CashflowEvent]] = {}
        self.baselines: Dict[str, BaselineRaw] = {}

    def add_instance(self, instance: LiveInstance, state: Optional[InstanceState] = None) -> None:
        self.instances[instance.id] = instance
        if state is not None:
            self.states[instance.id] = state

    def add_trade(self, instance_id: str, trade: TradeCloseEvent) -> None:
        self.trades.setdefault(instance_id, []).append(trade)

    def add_cashflow(self, instance_id: str, cashflow: CashflowEvent) -> None:
        self.cashflows.setdefault(instance_id, []).append(cashflow)

    def add_baseline(self, strategy_version_id: str, raw: BaselineRaw) -> None:
        self.baselines[strategy_version_id] = raw

    async def get_instance(self, instance_id: str) -> Optional[LiveInstance]:
        return self.instances.get(instance_id)

    async def get_state(self, instance_id: str) -> Optional[InstanceState]:
        return self.states.get(instance_id)

    async def get_trade_close_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[TradeCloseEvent]:
        events = [t for t in self.trades.get(instance_id, []) if _in_window(t.timestamp, since, until)]
        return sorted(events, key=lambda t: ensure_utc(t.timestamp))

    async def get_cashflow_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[CashflowEvent]:
        return [c for c in self.cashflows.get(instance_id, []) if _in_window(c.timestamp, since, until)]

    async def get_baseline(self, strategy_version_id: str) -> Optional[BaselineRaw]:
        return self.baselines.get(strategy_version_id)


# ── SQLite implementation ────────────────────────────────────────────


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS live_instances (
        id TEXT PRIMARY KEY,
        strategy_version_id TEXT,
        status TEXT NOT NULL DEFAULT 'ONLINE'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS track_record_state (
        instance_id TEXT PRIMARY KEY,
        balance REAL NOT NULL,
        equity REAL DEFAULT 0.0,
        high_water_mark REAL DEFAULT 0.0,
        max_drawdown_pct REAL DEFAULT 0.0,
        total_trades INTEGER DEFAULT 0,
        win_count INTEGER DEFAULT 0,
        loss_count INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS track_record_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        instance_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        payload TEXT DEFAULT '{}'
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_events_instance_type_ts
        ON track_record_events (instance_id, event_type, timestamp)
    """,
    """
    CREATE TABLE IF NOT EXISTS backtest_baselines (
        strategy_version_id TEXT PRIMARY KEY,
        total_trades INTEGER NOT NULL,
        win_rate REAL NOT NULL,
        profit_factor REAL NOT NULL,
        max_drawdown_pct REAL NOT NULL,
        avg_trades_per_day REAL NOT NULL,
        net_return_pct REAL NOT NULL,
        sharpe_ratio REAL NOT NULL,
        initial_deposit REAL NOT NULL,
        backtest_duration_days REAL NOT NULL
    )
    """,
)


class SqliteEventStore:
    """Async SQLite EventStore + BaselineStore."""

    def __init__(self, db_path: str = "strategy_health.db", timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the connection and create tables if they don't exist."""
        self._db = await aiosqlite.connect(self.db_path, timeout=self.timeout)
        for stmt in _SCHEMA:
            await self._db.execute(stmt)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    # ── Seeding ──────────────────────────────────────────────────────

    async def add_instance(self, instance: LiveInstance) -> None:
        db = await self._conn()
        await db.execute(
            "INSERT OR REPLACE INTO live_instances (id, strategy_version_id, status) VALUES (?,?,?)",
            (instance.id, instance.strategy_version_id, instance.status),
        )
        await db.commit()

    async def set_state(self, instance_id: str, state: InstanceState) -> None:
        db = await self._conn()
        await db.execute(
            "INSERT OR REPLACE INTO track_record_state "
            "(instance_id, balance, equity, high_water_mark, max_drawdown_pct, "
            "total_trades, win_count, loss_count) VALUES (?,?,?,?,?,?,?,?)",
            (
                instance_id, state.balance, state.equity, state.high_water_mark,
                state.max_drawdown_pct, state.total_trades, state.win_count, state.loss_count,
            ),
        )
        await db.commit()

    async def append_event(self, instance_id: str, event) -> None:
        """Append a TradeCloseEvent or CashflowEvent to the log."""
        event_type = TRADE_CLOSE if isinstance(event, TradeCloseEvent) else CASHFLOW
        db = await self._conn()
        await db.execute(
            "INSERT INTO track_record_events (instance_id, event_type, timestamp, payload) "
            "VALUES (?,?,?,?)",
            (instance_id, event_type, to_iso(event.timestamp), json.dumps(event.to_payload())),
        )
        await db.commit()

    async def save_baseline(self, strategy_version_id: str, raw: BaselineRaw) -> None:
        db = await self._conn()
        await db.execute(
            "INSERT OR REPLACE INTO backtest_baselines "
            "(strategy_version_id, total_trades, win_rate, profit_factor, max_drawdown_pct, "
            "avg_trades_per_day, net_return_pct, sharpe_ratio, initial_deposit, "
            "backtest_duration_days) VALUES (?,?,?,?,?,?,?,?,?,?)",
            (
                strategy_version_id, raw.total_trades, raw.win_rate, raw.profit_factor,
                raw.max_drawdown_pct, raw.avg_trades_per_day, raw.net_return_pct,
                raw.sharpe_ratio, raw.initial_deposit, raw.backtest_duration_days,
            ),
        )
        await db.commit()

    # ── Queries ──────────────────────────────────────────────────────

    async def get_instance(self, instance_id: str) -> Optional[LiveInstance]:
        db = await self._conn()
        async with db.execute(
            "SELECT id, strategy_version_id, status FROM live_instances WHERE id = ?",
            (instance_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return LiveInstance(id=row[0], strategy_version_id=row[1], status=row[2])

    async def get_state(self, instance_id: str) -> Optional[InstanceState]:
        db = await self._conn()
        async with db.execute(
            "SELECT balance, equity, high_water_mark, max_drawdown_pct, total_trades, "
            "win_count, loss_count FROM track_record_state WHERE instance_id = ?",
            (instance_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return InstanceState(*row)

    async def _events(
        self, instance_id: str, event_type: str, since: datetime, until: Optional[datetime],
    ) -> List[tuple]:
        sql = (
            "SELECT timestamp, payload FROM track_record_events "
            "WHERE instance_id = ? AND event_type = ? AND timestamp >= ?"
        )
        params: list = [instance_id, event_type, to_iso(since)]
        if until is not None:
            sql += " AND timestamp <= ?"
            params.append(to_iso(until))
        sql += " ORDER BY timestamp ASC, id ASC"
        db = await self._conn()
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
        return [(from_iso(ts), json.loads(payload or "{}")) for ts, payload in rows]

    async def get_trade_close_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[TradeCloseEvent]:
        rows = await self._events(instance_id, TRADE_CLOSE, since, until)
        return [TradeCloseEvent.from_payload(ts, payload) for ts, payload in rows]

    async def get_cashflow_events(
        self, instance_id: str, since: datetime, until: Optional[datetime] = None,
    ) -> List[CashflowEvent]:
        rows = await self._events(instance_id, CASHFLOW, since, until)
        return [CashflowEvent.from_payload(ts, payload) for ts, payload in rows]

    async def get_baseline(self, strategy_version_id: str) -> Optional[BaselineRaw]:
        db = await self._conn()
        async with db.execute(
            "SELECT total_trades, win_rate, profit_factor, max_drawdown_pct, "
            "avg_trades_per_day, net_return_pct, sharpe_ratio, initial_deposit, "
            "backtest_duration_days FROM backtest_baselines WHERE strategy_version_id = ?",
            (strategy_version_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return BaselineRaw(*row)
