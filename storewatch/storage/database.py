from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from storewatch.errors import StoreListingError
from storewatch.models import (
    Alert,
    AlertCategory,
    PingLog,
    RunRecord,
    RunStatus,
    Severity,
    Store,
    StoreStatus,
    utcnow,
)


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 2

# Columns the engine is allowed to mutate on a store row.
_STORE_UPDATABLE = {"url", "status", "baseline_url", "failed_attempts", "last_checked", "owner_chat_id"}


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromisoformat(str(value))


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing database_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        _apply_v2(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    if cur == 1:
        _apply_v2(conn)
        conn.execute("UPDATE schema_meta SET v=? WHERE k='version'", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return any(str(r["name"]) == column for r in rows)


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS stores (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          url TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'active',
          baseline_url TEXT,
          failed_attempts INTEGER NOT NULL DEFAULT 0,
          last_checked TEXT,
          created_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS runs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
          started_at TEXT NOT NULL,
          finished_at TEXT,
          status TEXT NOT NULL,
          error_message TEXT,
          screenshot_url TEXT,
          diff_percentage REAL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
          category TEXT NOT NULL,
          step TEXT,
          before_url TEXT,
          after_url TEXT,
          diff_url TEXT,
          diff_percentage REAL,
          severity TEXT NOT NULL,
          created_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ping_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
          status_code INTEGER,
          response_time_ms INTEGER,
          is_up INTEGER NOT NULL,
          error_message TEXT,
          checked_at TEXT NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_stores_status ON stores(status);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_store ON runs(store_id, id);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_store ON alerts(store_id, category, id);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_ping_logs_store ON ping_logs(store_id, id);")


def _apply_v2(conn: sqlite3.Connection) -> None:
    # v2: notification recipient resolved from store ownership.
    if not _column_exists(conn, "stores", "owner_chat_id"):
        conn.execute("ALTER TABLE stores ADD COLUMN owner_chat_id TEXT;")


def _row_to_store(row: sqlite3.Row) -> Store:
    return Store(
        id=int(row["id"]),
        url=str(row["url"]),
        status=StoreStatus(row["status"]),
        baseline_url=row["baseline_url"],
        failed_attempts=int(row["failed_attempts"] or 0),
        last_checked=_parse_ts(row["last_checked"]),
        owner_chat_id=row["owner_chat_id"],
    )


def _row_to_run(row: sqlite3.Row) -> RunRecord:
    return RunRecord(
        id=int(row["id"]),
        store_id=int(row["store_id"]),
        started_at=_parse_ts(row["started_at"]),
        finished_at=_parse_ts(row["finished_at"]),
        status=RunStatus(row["status"]),
        error_message=row["error_message"],
        screenshot_url=row["screenshot_url"],
        diff_percentage=row["diff_percentage"],
    )


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=int(row["id"]),
        store_id=int(row["store_id"]),
        category=AlertCategory(row["category"]),
        severity=Severity(row["severity"]),
        step=row["step"],
        before_url=row["before_url"],
        after_url=row["after_url"],
        diff_url=row["diff_url"],
        diff_percentage=row["diff_percentage"],
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_ping(row: sqlite3.Row) -> PingLog:
    return PingLog(
        id=int(row["id"]),
        store_id=int(row["store_id"]),
        is_up=bool(row["is_up"]),
        response_time_ms=row["response_time_ms"],
        status_code=row["status_code"],
        error_message=row["error_message"],
        checked_at=_parse_ts(row["checked_at"]),
    )


class StoreRepository:
    """SQLite-backed records for stores, runs, alerts and ping history."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn = _connect(db_path)
        _ensure_schema_conn(self._conn)
        logger.info("Database ready", db_path=db_path, schema_version=SCHEMA_VERSION)

    def close(self) -> None:
        self._conn.close()

    # -------- stores --------

    def add_store(
        self,
        url: str,
        *,
        owner_chat_id: str | None = None,
        status: StoreStatus = StoreStatus.ACTIVE,
    ) -> Store:
        cur = self._conn.execute(
            "INSERT INTO stores (url, status, owner_chat_id, created_at) VALUES (?, ?, ?, ?)",
            (url, status.value, owner_chat_id, _ts(utcnow())),
        )
        store = self.get_store(int(cur.lastrowid))
        if store is None:
            raise RuntimeError(f"Store {cur.lastrowid} missing right after insert")
        return store

    def get_store(self, store_id: int) -> Store | None:
        row = self._conn.execute("SELECT * FROM stores WHERE id=?", (store_id,)).fetchone()
        return _row_to_store(row) if row else None

    def list_active_stores(self) -> list[Store]:
        try:
            rows = self._conn.execute(
                "SELECT * FROM stores WHERE status=? ORDER BY id", (StoreStatus.ACTIVE.value,)
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreListingError(f"Cannot list active stores: {e}") from e
        return [_row_to_store(r) for r in rows]

    def update_store(self, store_id: int, **fields: Any) -> None:
        unknown = set(fields) - _STORE_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown store fields: {sorted(unknown)}")
        if not fields:
            return

        values: list[Any] = []
        for key, value in fields.items():
            if isinstance(value, StoreStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _ts(value)
            values.append(value)

        assignments = ", ".join(f"{key}=?" for key in fields)
        self._conn.execute(f"UPDATE stores SET {assignments} WHERE id=?", (*values, store_id))

    # -------- runs --------

    def insert_run(self, run: RunRecord) -> RunRecord:
        cur = self._conn.execute(
            """
            INSERT INTO runs (store_id, started_at, finished_at, status, error_message, screenshot_url, diff_percentage)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.store_id,
                _ts(run.started_at),
                _ts(run.finished_at),
                run.status.value,
                run.error_message,
                run.screenshot_url,
                run.diff_percentage,
            ),
        )
        run.id = int(cur.lastrowid)
        return run

    def list_runs(self, store_id: int) -> list[RunRecord]:
        rows = self._conn.execute("SELECT * FROM runs WHERE store_id=? ORDER BY id", (store_id,)).fetchall()
        return [_row_to_run(r) for r in rows]

    # -------- alerts --------

    def insert_alert(self, alert: Alert) -> Alert:
        cur = self._conn.execute(
            """
            INSERT INTO alerts (store_id, category, step, before_url, after_url, diff_url, diff_percentage, severity, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.store_id,
                alert.category.value,
                alert.step,
                alert.before_url,
                alert.after_url,
                alert.diff_url,
                alert.diff_percentage,
                alert.severity.value,
                _ts(alert.created_at),
            ),
        )
        alert.id = int(cur.lastrowid)
        return alert

    def list_alerts(self, store_id: int, category: AlertCategory | None = None) -> list[Alert]:
        if category is None:
            rows = self._conn.execute("SELECT * FROM alerts WHERE store_id=? ORDER BY id", (store_id,)).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM alerts WHERE store_id=? AND category=? ORDER BY id",
                (store_id, category.value),
            ).fetchall()
        return [_row_to_alert(r) for r in rows]

    def latest_alert(self, store_id: int, category: AlertCategory) -> Alert | None:
        row = self._conn.execute(
            "SELECT * FROM alerts WHERE store_id=? AND category=? ORDER BY id DESC LIMIT 1",
            (store_id, category.value),
        ).fetchone()
        return _row_to_alert(row) if row else None

    # -------- ping logs --------

    def insert_ping(self, ping: PingLog) -> PingLog:
        cur = self._conn.execute(
            """
            INSERT INTO ping_logs (store_id, status_code, response_time_ms, is_up, error_message, checked_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                ping.store_id,
                ping.status_code,
                ping.response_time_ms,
                1 if ping.is_up else 0,
                ping.error_message,
                _ts(ping.checked_at),
            ),
        )
        ping.id = int(cur.lastrowid)
        return ping

    def previous_ping(self, store_id: int, before_id: int) -> PingLog | None:
        """Return the ping recorded for the store immediately before ``before_id``."""
        row = self._conn.execute(
            "SELECT * FROM ping_logs WHERE store_id=? AND id<? ORDER BY id DESC LIMIT 1",
            (store_id, before_id),
        ).fetchone()
        return _row_to_ping(row) if row else None

    def list_pings(self, store_id: int) -> list[PingLog]:
        rows = self._conn.execute("SELECT * FROM ping_logs WHERE store_id=? ORDER BY id", (store_id,)).fetchall()
        return [_row_to_ping(r) for r in rows]
