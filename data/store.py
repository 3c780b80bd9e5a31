from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Mapping

import psycopg
from psycopg.rows import dict_row

from engine.instruments import classify_instrument
from engine.models import (
    OPEN_STATUSES,
    Direction,
    EvalAction,
    EvalResult,
    InstrumentType,
    IntegrityReason,
    ResolutionSource,
    SignalStatus,
    TradeSignal,
)


_SIGNAL_COLUMNS = (
    "user_id",
    "instrument",
    "instrument_type",
    "direction",
    "entry_price",
    "stop_loss",
    "take_profit",
    "declared_entry_ts",
    "status",
    "created_at",
)


class BaseStore:
    def add_signal(self, signal: TradeSignal) -> TradeSignal:
        raise NotImplementedError

    def get_signal(self, signal_id: int) -> TradeSignal | None:
        raise NotImplementedError

    def list_open_signals(self, after_id: int = 0, limit: int = 50) -> list[TradeSignal]:
        raise NotImplementedError

    def list_flagged_signals(self, limit: int = 10) -> list[TradeSignal]:
        raise NotImplementedError

    def count_by_status(self) -> dict[str, int]:
        raise NotImplementedError

    def touch_evaluated(self, signal_id: int, status: SignalStatus, evaluated_at: int) -> bool:
        raise NotImplementedError

    def apply_result(self, signal: TradeSignal, result: EvalResult, evaluated_at: int) -> bool:
        raise NotImplementedError

    def mark_manual_resolution(self, signal_id: int, status: SignalStatus, resolved_at: int, note: str = "") -> bool:
        raise NotImplementedError

    def list_status_history(self, signal_id: int) -> list[dict[str, Any]]:
        raise NotImplementedError

    def set_setting(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def get_setting(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set_runner_state(self, **kwargs: Any) -> None:
        raise NotImplementedError

    def get_runner_state(self) -> dict[str, Any]:
        raise NotImplementedError


class SQLiteStore(BaseStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self._connect() as conn:
            conn.executescript(schema_path.read_text())
            conn.execute(
                "INSERT OR IGNORE INTO runner_state (id, updated_at) VALUES (1, ?)",
                (int(time.time()),),
            )

    def add_signal(self, signal: TradeSignal) -> TradeSignal:
        created_at = signal.created_at or int(time.time())
        values = _signal_values(signal, created_at)
        with self._connect() as conn:
            cur = conn.execute(
                f"INSERT INTO trade_signals ({', '.join(_SIGNAL_COLUMNS)}) VALUES ({', '.join('?' * len(_SIGNAL_COLUMNS))})",
                values,
            )
            signal_id = cur.lastrowid
        return self.get_signal(signal_id)

    def get_signal(self, signal_id: int) -> TradeSignal | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM trade_signals WHERE id=?", (signal_id,)).fetchone()
            return _row_to_signal(row) if row else None

    def list_open_signals(self, after_id: int = 0, limit: int = 50) -> list[TradeSignal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trade_signals WHERE status IN (?, ?) "
                "AND (resolution_source IS NULL OR resolution_source <> ?) AND id > ? ORDER BY id LIMIT ?",
                (SignalStatus.PENDING.value, SignalStatus.ENTERED.value, ResolutionSource.MANUAL.value, after_id, limit),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]

    def list_flagged_signals(self, limit: int = 10) -> list[TradeSignal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trade_signals WHERE status=? ORDER BY resolved_at DESC, id DESC LIMIT ?",
                (SignalStatus.UNVERIFIED.value, limit),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]

    def count_by_status(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM trade_signals GROUP BY status").fetchall()
            return {r["status"]: r["n"] for r in rows}

    def touch_evaluated(self, signal_id: int, status: SignalStatus, evaluated_at: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE trade_signals SET last_evaluated_at=? WHERE id=? AND status=?",
                (evaluated_at, signal_id, status.value),
            )
            return cur.rowcount == 1

    def apply_result(self, signal: TradeSignal, result: EvalResult, evaluated_at: int) -> bool:
        if result.action == EvalAction.NOOP:
            return self.touch_evaluated(signal.id, signal.status, evaluated_at)
        fields = _transition_fields(result, evaluated_at)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE trade_signals SET {', '.join(f'{k}=?' for k in fields)} WHERE id=? AND status=?",
                list(fields.values()) + [signal.id, signal.status.value],
            )
            if cur.rowcount != 1:
                return False
            conn.execute(
                "INSERT INTO signal_status_history (signal_id, from_status, to_status, note, created_at) VALUES (?, ?, ?, ?, ?)",
                (signal.id, signal.status.value, fields["status"], _history_note(result), evaluated_at),
            )
        return True

    def mark_manual_resolution(self, signal_id: int, status: SignalStatus, resolved_at: int, note: str = "") -> bool:
        if not status.is_terminal:
            raise ValueError(f"Manual resolution must be terminal, got {status.value}")
        with self._connect() as conn:
            row = conn.execute("SELECT status FROM trade_signals WHERE id=?", (signal_id,)).fetchone()
            if not row or row["status"] not in (s.value for s in OPEN_STATUSES):
                return False
            cur = conn.execute(
                "UPDATE trade_signals SET status=?, resolved_at=?, resolution_source=? WHERE id=? AND status=?",
                (status.value, resolved_at, ResolutionSource.MANUAL.value, signal_id, row["status"]),
            )
            if cur.rowcount != 1:
                return False
            conn.execute(
                "INSERT INTO signal_status_history (signal_id, from_status, to_status, note, created_at) VALUES (?, ?, ?, ?, ?)",
                (signal_id, row["status"], status.value, note or "Manual resolution", resolved_at),
            )
        return True

    def list_status_history(self, signal_id: int) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM signal_status_history WHERE signal_id=? ORDER BY id",
                (signal_id,),
            ).fetchall()
            return [dict(r) for r in rows]

    def set_setting(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, json.dumps(value)),
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
            if not row:
                return default
            return json.loads(row["value"])

    def set_runner_state(self, **kwargs: Any) -> None:
        kwargs["updated_at"] = int(time.time())
        with self._connect() as conn:
            conn.execute(
                f"UPDATE runner_state SET {', '.join(f'{k}=?' for k in kwargs)} WHERE id=1",
                list(kwargs.values()),
            )

    def get_runner_state(self) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM runner_state WHERE id=1").fetchone()
            return dict(row) if row else {}


class PostgresStore(BaseStore):
    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self.dsn, row_factory=dict_row)

    def _ensure_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema_pg.sql")
        with self._connect() as conn:
            statements = [s.strip() for s in schema_path.read_text().split(";") if s.strip()]
            for stmt in statements:
                conn.execute(stmt)
            conn.execute(
                "INSERT INTO runner_state (id, updated_at) VALUES (1, %s) ON CONFLICT DO NOTHING",
                (int(time.time()),),
            )

    def add_signal(self, signal: TradeSignal) -> TradeSignal:
        created_at = signal.created_at or int(time.time())
        values = _signal_values(signal, created_at)
        with self._connect() as conn:
            row = conn.execute(
                f"INSERT INTO trade_signals ({', '.join(_SIGNAL_COLUMNS)}) VALUES ({', '.join(['%s'] * len(_SIGNAL_COLUMNS))}) RETURNING id",
                values,
            ).fetchone()
        return self.get_signal(row["id"])

    def get_signal(self, signal_id: int) -> TradeSignal | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM trade_signals WHERE id=%s", (signal_id,)).fetchone()
            return _row_to_signal(row) if row else None

    def list_open_signals(self, after_id: int = 0, limit: int = 50) -> list[TradeSignal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trade_signals WHERE status IN (%s, %s) "
                "AND (resolution_source IS NULL OR resolution_source <> %s) AND id > %s ORDER BY id LIMIT %s",
                (SignalStatus.PENDING.value, SignalStatus.ENTERED.value, ResolutionSource.MANUAL.value, after_id, limit),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]

    def list_flagged_signals(self, limit: int = 10) -> list[TradeSignal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trade_signals WHERE status=%s ORDER BY resolved_at DESC NULLS LAST, id DESC LIMIT %s",
                (SignalStatus.UNVERIFIED.value, limit),
            ).fetchall()
            return [_row_to_signal(r) for r in rows]

    def count_by_status(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM trade_signals GROUP BY status").fetchall()
            return {r["status"]: r["n"] for r in rows}

    def touch_evaluated(self, signal_id: int, status: SignalStatus, evaluated_at: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE trade_signals SET last_evaluated_at=%s WHERE id=%s AND status=%s",
                (evaluated_at, signal_id, status.value),
            )
            return cur.rowcount == 1

    def apply_result(self, signal: TradeSignal, result: EvalResult, evaluated_at: int) -> bool:
        if result.action == EvalAction.NOOP:
            return self.touch_evaluated(signal.id, signal.status, evaluated_at)
        fields = _transition_fields(result, evaluated_at)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE trade_signals SET {', '.join(f'{k}=%s' for k in fields)} WHERE id=%s AND status=%s",
                list(fields.values()) + [signal.id, signal.status.value],
            )
            if cur.rowcount != 1:
                return False
            conn.execute(
                "INSERT INTO signal_status_history (signal_id, from_status, to_status, note, created_at) VALUES (%s, %s, %s, %s, %s)",
                (signal.id, signal.status.value, fields["status"], _history_note(result), evaluated_at),
            )
        return True

    def mark_manual_resolution(self, signal_id: int, status: SignalStatus, resolved_at: int, note: str = "") -> bool:
        if not status.is_terminal:
            raise ValueError(f"Manual resolution must be terminal, got {status.value}")
        with self._connect() as conn:
            row = conn.execute("SELECT status FROM trade_signals WHERE id=%s FOR UPDATE", (signal_id,)).fetchone()
            if not row or row["status"] not in (s.value for s in OPEN_STATUSES):
                return False
            conn.execute(
                "UPDATE trade_signals SET status=%s, resolved_at=%s, resolution_source=%s WHERE id=%s",
                (status.value, resolved_at, ResolutionSource.MANUAL.value, signal_id),
            )
            conn.execute(
                "INSERT INTO signal_status_history (signal_id, from_status, to_status, note, created_at) VALUES (%s, %s, %s, %s, %s)",
                (signal_id, row["status"], status.value, note or "Manual resolution", resolved_at),
            )
        return True

    def list_status_history(self, signal_id: int) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM signal_status_history WHERE signal_id=%s ORDER BY id",
                (signal_id,),
            ).fetchall()
            return [dict(r) for r in rows]

    def set_setting(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (%s, %s) ON CONFLICT (key) DO UPDATE SET value=excluded.value",
                (key, json.dumps(value)),
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=%s", (key,)).fetchone()
            if not row:
                return default
            return json.loads(row["value"])

    def set_runner_state(self, **kwargs: Any) -> None:
        kwargs["updated_at"] = int(time.time())
        with self._connect() as conn:
            conn.execute(
                f"UPDATE runner_state SET {', '.join(f'{k}=%s' for k in kwargs)} WHERE id=1",
                list(kwargs.values()),
            )

    def get_runner_state(self) -> dict[str, Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_run_at, last_summary, last_error, updated_at FROM runner_state WHERE id=1"
            ).fetchone()
            return dict(row) if row else {}


def _signal_values(signal: TradeSignal, created_at: int) -> tuple:
    return (
        signal.user_id,
        signal.instrument,
        (signal.instrument_type or classify_instrument(signal.instrument)).value,
        signal.direction.value,
        signal.entry_price,
        signal.stop_loss,
        signal.take_profit,
        signal.declared_entry_ts,
        signal.status.value,
        created_at,
    )


def _transition_fields(result: EvalResult, evaluated_at: int) -> dict[str, Any]:
    fields: dict[str, Any] = {"status": result.target_status.value, "last_evaluated_at": evaluated_at}
    if result.action == EvalAction.ENTER:
        fields["entered_at"] = result.timestamp
        return fields
    fields["resolution_source"] = ResolutionSource.EVALUATOR.value
    if result.action == EvalAction.MARK_UNVERIFIED:
        fields["resolved_at"] = evaluated_at
        fields["integrity_reason"] = result.reason.value
        fields["integrity_details"] = json.dumps(result.details, default=str)
    else:
        fields["resolved_at"] = result.timestamp
    return fields


def _history_note(result: EvalResult) -> str:
    if result.action == EvalAction.MARK_UNVERIFIED:
        return f"Evaluator: {result.reason.value}"
    return f"Evaluator: {result.action.value}"


def _row_to_signal(row: Mapping[str, Any]) -> TradeSignal:
    details = row["integrity_details"]
    return TradeSignal(
        id=row["id"],
        user_id=row["user_id"],
        instrument=row["instrument"],
        instrument_type=InstrumentType(row["instrument_type"]),
        direction=Direction(row["direction"]),
        entry_price=float(row["entry_price"]),
        stop_loss=float(row["stop_loss"]),
        take_profit=float(row["take_profit"]),
        declared_entry_ts=row["declared_entry_ts"],
        status=SignalStatus(row["status"]),
        entered_at=row["entered_at"],
        resolved_at=row["resolved_at"],
        resolution_source=ResolutionSource(row["resolution_source"]) if row["resolution_source"] else None,
        integrity_reason=IntegrityReason(row["integrity_reason"]) if row["integrity_reason"] else None,
        integrity_details=json.loads(details) if details else None,
        last_evaluated_at=row["last_evaluated_at"],
        created_at=row["created_at"],
    )


def create_store(database_url: str | None, sqlite_path: str) -> BaseStore:
    if database_url:
        return PostgresStore(database_url)
    return SQLiteStore(sqlite_path)
