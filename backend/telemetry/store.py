from __future__ import annotations

import json
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
from loguru import logger

from telemetry.sql import (
    CREATE_EVENTS_TABLE_SQL,
    INSERT_EVENTS_SQL,
    SLOWEST_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

_BATCH_MAX = 250
_BATCH_AGE_S = 0.5


def _opt_float(v) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _event_row(
    *,
    layer_key: str,
    outcome: str,
    filter_signature: str,
    view_zoom: float,
    aoi: dict[str, float],
    stats: dict[str, Any],
) -> tuple:
    total_ms = _opt_float((stats.get("timingsMs") or {}).get("total"))
    features = stats.get("features")
    return (
        int(time.time() * 1000),
        str(layer_key),
        str(outcome),
        str(filter_signature),
        float(view_zoom),
        float(aoi["west"]),
        float(aoi["south"]),
        float(aoi["east"]),
        float(aoi["north"]),
        total_ms,
        int(features) if features is not None else None,
        json.dumps(stats, ensure_ascii=False),
    )


@dataclass
class TelemetryStore:
    """
    Fetch events persisted to DuckDB by a single background writer thread.

    `record` only enqueues, so it is safe to call from the event loop.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[tuple]" = field(default_factory=lambda: queue.Queue(maxsize=10_000), repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._write_loop, name="fetch-telemetry", daemon=True)
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stop.set()
        worker, self._worker = self._worker, None
        if worker is not None and worker.is_alive():
            worker.join(timeout=timeout_s)

    def close(self) -> None:
        self.stop()
        with self._lock:
            self.conn.close()

    def reset(self) -> None:
        """Close the store and delete its database file."""
        self.close()
        self.path.unlink(missing_ok=True)

    def record(self, **event: Any) -> None:
        self.start()
        try:
            self._q.put_nowait(_event_row(**event))
        except queue.Full:
            logger.debug("telemetry queue full; fetch event dropped")

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """Block until everything queued so far is written."""
        if self._worker is None:
            return
        deadline = time.monotonic() + timeout_s
        while self._q.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(self, *, layer_key: str | None = None, since_ms: int | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if layer_key:
            clauses.append("layer_key = ?")
            params.append(layer_key)
        if since_ms is not None:
            clauses.append("ts_ms >= ?")
            params.append(int(since_ms))
        where_sql = ("WHERE " + " AND ".join(clauses)) if clauses else ""

        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)
        return [
            {
                "layerKey": key,
                "n": int(n),
                "failures": int(failures or 0),
                "avgTotalMs": _opt_float(avg_ms),
                "p50TotalMs": _opt_float(p50),
                "p95TotalMs": _opt_float(p95),
                "avgFeatures": _opt_float(avg_features),
            }
            for key, n, failures, avg_ms, p50, p95, avg_features in rows
        ]

    def slowest(self, *, layer_key: str | None = None, limit: int = 25) -> list[dict[str, Any]]:
        clauses = ["total_ms IS NOT NULL"]
        params: list[Any] = []
        if layer_key:
            clauses.append("layer_key = ?")
            params.append(layer_key)
        params.append(max(1, min(200, int(limit))))

        rows = self.query(SLOWEST_SQL_TEMPLATE.format(where_sql=" AND ".join(clauses)), params)
        return [
            {
                "tsMs": int(ts_ms),
                "layerKey": key,
                "outcome": outcome,
                "totalMs": _opt_float(total_ms),
                "features": int(features) if features is not None else None,
                "viewZoom": _opt_float(view_zoom),
            }
            for ts_ms, key, outcome, total_ms, features, view_zoom in rows
        ]

    def _write(self, rows: list[tuple]) -> None:
        if not rows:
            return
        with self._lock:
            self.conn.executemany(INSERT_EVENTS_SQL, rows)
            self.conn.execute("CHECKPOINT;")
        for _ in rows:
            self._q.task_done()

    def _write_loop(self) -> None:
        pending: list[tuple] = []
        oldest = 0.0
        while not self._stop.is_set():
            try:
                row = self._q.get(timeout=0.1)
            except queue.Empty:
                row = None
            if row is not None:
                if not pending:
                    oldest = time.monotonic()
                pending.append(row)
            # Write as soon as the queue drains.
            idle = row is None or self._q.empty()
            if pending and (idle or len(pending) >= _BATCH_MAX or time.monotonic() - oldest >= _BATCH_AGE_S):
                self._write(pending)
                pending = []

        while True:
            try:
                pending.append(self._q.get_nowait())
            except queue.Empty:
                break
        self._write(pending)
