from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from loguru import logger

from geo.aoi import BBox
from geo.projection import max_corner_shift_m

DEFAULT_QUIET_PERIOD_S = 0.3
DEFAULT_MIN_SHIFT_M = 5.0


@dataclass(frozen=True)
class Viewport:
    """
    Settled map bounds. Replaced wholesale on every settle event, never mutated.
    """

    west: float
    south: float
    east: float
    north: float
    zoom: float

    @property
    def bbox(self) -> BBox:
        return BBox(
            min_lon=self.west, min_lat=self.south, max_lon=self.east, max_lat=self.north
        )

    def rounded_key(self, decimals: int = 4) -> tuple[float, float, float, float]:
        return self.bbox.rounded_key(decimals)

    def as_dict(self) -> dict[str, float]:
        return {
            "west": self.west,
            "south": self.south,
            "east": self.east,
            "north": self.north,
            "zoom": self.zoom,
        }


def zoom_bucket(view_zoom: float) -> int:
    """
    Integer zoom used to decide whether a zoom change is material.

    Fractional scroll-zoom jitter stays in the same bucket.
    """
    z = int(round(float(view_zoom)))
    return max(3, min(18, z))


def parse_viewport(raw: Any) -> Viewport | None:
    """
    Accept a `Viewport`, a mapping with west/south/east/north(/zoom) or a 4-5 item sequence.

    Returns None for anything that is not a finite, non-inverted box.
    """
    if isinstance(raw, Viewport):
        vals: list[Any] = [raw.west, raw.south, raw.east, raw.north, raw.zoom]
    elif isinstance(raw, Mapping):
        vals = [
            raw.get("west"),
            raw.get("south"),
            raw.get("east"),
            raw.get("north"),
            raw.get("zoom", 0.0),
        ]
    elif isinstance(raw, (list, tuple)) and len(raw) in (4, 5):
        vals = list(raw) + ([0.0] if len(raw) == 4 else [])
    else:
        return None

    try:
        w, s, e, n, z = (float(v) for v in vals)
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(v) for v in (w, s, e, n, z)):
        return None

    vp = Viewport(west=w, south=s, east=e, north=n, zoom=z)
    if not vp.bbox.is_valid():
        return None
    return vp


def same_viewport(a: Viewport, b: Viewport, *, min_shift_m: float) -> bool:
    if zoom_bucket(a.zoom) != zoom_bucket(b.zoom):
        return False
    return max_corner_shift_m(a.bbox, b.bbox) < float(min_shift_m)


class ViewportTracker:
    """
    Debounces raw bounds events into settled viewports.

    Every raw event resets a single `call_later` timer; the viewport is emitted once the
    map has been quiet for `quiet_period_s`. Settles that are indistinguishable from the
    current viewport are suppressed.
    Without a running event loop the latest bounds wait for `flush()`.
    """

    def __init__(
        self,
        on_settle: Callable[[Viewport], None] | None = None,
        *,
        quiet_period_s: float = DEFAULT_QUIET_PERIOD_S,
        min_shift_m: float = DEFAULT_MIN_SHIFT_M,
    ) -> None:
        self._on_settle = on_settle
        self.quiet_period_s = float(quiet_period_s)
        self.min_shift_m = float(min_shift_m)
        self._current: Viewport | None = None
        self._pending: Viewport | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.stats: dict[str, int] = {"raw": 0, "dropped": 0, "suppressed": 0, "settled": 0}

    @property
    def current_viewport(self) -> Viewport | None:
        return self._current

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def on_bounds_change(self, raw_bounds: Any) -> None:
        self.stats["raw"] += 1
        vp = parse_viewport(raw_bounds)
        if vp is None:
            self.stats["dropped"] += 1
            logger.debug(f"viewport: dropped malformed bounds {raw_bounds!r}")
            return

        self._pending = vp
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("viewport: no running event loop; bounds kept until flush()")
            return
        self._timer = loop.call_later(self.quiet_period_s, self._settle)

    def flush(self) -> Viewport | None:
        """
        Settle the pending viewport now (e.g. initial map load). Returns the current viewport.
        """
        if self._timer is not None:
            self._timer.cancel()
        if self._pending is not None:
            self._settle()
        return self._current

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def _settle(self) -> None:
        vp = self._pending
        self._pending = None
        self._timer = None
        if vp is None:
            return

        cur = self._current
        if cur is not None and same_viewport(cur, vp, min_shift_m=self.min_shift_m):
            self.stats["suppressed"] += 1
            logger.debug("viewport: settle suppressed (no material change)")
            return

        self._current = vp
        self.stats["settled"] += 1
        logger.debug(
            f"viewport: settled w={vp.west:.5f} s={vp.south:.5f} "
            f"e={vp.east:.5f} n={vp.north:.5f} z={vp.zoom:.2f}"
        )
        if self._on_settle is not None:
            self._on_settle(vp)
