from __future__ import annotations

import os
import threading
from pathlib import Path

import duckdb

from telemetry.store import TelemetryStore

_STORE: TelemetryStore | None = None
_STORE_LOCK = threading.RLock()


def store_path() -> Path:
    raw = os.getenv("PARCELMAP_TELEMETRY_PATH")
    if raw:
        return Path(raw)
    return Path(__file__).resolve().parents[2] / "data" / "telemetry" / "telemetry.duckdb"


def enabled() -> bool:
    return (os.getenv("PARCELMAP_TELEMETRY") or "").strip().lower() in {"1", "true", "yes", "on"}


def get_store() -> TelemetryStore | None:
    """
    Process-wide fetch telemetry store, or None when PARCELMAP_TELEMETRY is not set.
    """
    global _STORE
    if not enabled():
        return None
    path = store_path()
    with _STORE_LOCK:
        if _STORE is not None and _STORE.path.resolve() != path.resolve():
            _STORE.close()
            _STORE = None
        if _STORE is None:
            path.parent.mkdir(parents=True, exist_ok=True)
            _STORE = TelemetryStore(path=path, conn=duckdb.connect(str(path)))
            _STORE.ensure_schema()
            _STORE.start()
        return _STORE


def reset_store() -> None:
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            store_path().unlink(missing_ok=True)
            return
        _STORE.reset()
        _STORE = None
