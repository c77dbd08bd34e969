from __future__ import annotations

import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def api_base_url() -> str:
    return (os.getenv("PARCELMAP_API_URL") or "http://localhost:8000").rstrip("/")


def http_timeout_s() -> float:
    return _env_float("PARCELMAP_HTTP_TIMEOUT_S", 15.0)


def debounce_s() -> float:
    return _env_float("PARCELMAP_DEBOUNCE_MS", 300.0) / 1000.0


def min_pan_m() -> float:
    return _env_float("PARCELMAP_MIN_PAN_M", 5.0)


def log_level() -> str:
    return (os.getenv("PARCELMAP_LOG_LEVEL") or "INFO").strip().upper()


@dataclass(frozen=True)
class EngineSettings:
    api_base_url: str = "http://localhost:8000"
    http_timeout_s: float = 15.0
    debounce_s: float = 0.3
    min_pan_m: float = 5.0
    # Rounding for viewport cache keys (4 decimals ~ 11m).
    bbox_decimals: int = 4

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            api_base_url=api_base_url(),
            http_timeout_s=http_timeout_s(),
            debounce_s=debounce_s(),
            min_pan_m=min_pan_m(),
        )
