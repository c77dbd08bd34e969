from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from loguru import logger

from layers.types import FeatureCollectionGeneration, business_key_str
from render.adapter import RenderSurfaceAdapter


@dataclass(frozen=True)
class ReconcileResult:
    layer_key: str
    generation_id: int
    writes: int = 0
    selected: int = 0
    highlighted: int = 0
    filter_matched: int = 0
    hovered: int = 0
    # Business keys with no feature in this generation (not loaded in the current view).
    unresolved: int = 0
    skipped: bool = False


def _keys(values: Iterable[Any] | None) -> set[str]:
    out: set[str] = set()
    for v in values or ():
        k = business_key_str(v)
        if k is not None:
            out.add(k)
    return out


class FeatureStateReconciler:
    """
    Projects host selection signals (business keys) onto positional feature state.

    Every reconcile starts from a full clear of the layer's feature state, then writes the
    flags derived from the generation being shown, one merged write per feature.
    """

    def __init__(self, adapter: RenderSurfaceAdapter) -> None:
        self.adapter = adapter

    def reconcile(
        self,
        layer_key: str,
        generation: FeatureCollectionGeneration,
        selected_business_key: Any | None,
        highlighted_business_keys: Iterable[Any] | None,
        filter_matched_business_keys: Iterable[Any] | None,
        *,
        hovered_business_key: Any | None = None,
    ) -> ReconcileResult:
        shown = self.adapter.current_generation_id(layer_key)
        if shown != generation.generation_id:
            logger.debug(
                f"reconcile skipped: {layer_key} shows generation {shown}, "
                f"got {generation.generation_id}"
            )
            return ReconcileResult(
                layer_key=layer_key, generation_id=generation.generation_id, skipped=True
            )

        index = generation.business_key_index()
        self.adapter.clear_feature_state(layer_key)

        patches: dict[int, dict[str, bool]] = {}
        unresolved = 0

        def mark(keys: set[str], flag: str) -> int:
            nonlocal unresolved
            hits = 0
            for k in keys:
                pids = index.get(k)
                if not pids:
                    unresolved += 1
                    continue
                for pid in pids:
                    patches.setdefault(pid, {})[flag] = True
                    hits += 1
            return hits

        n_highlighted = mark(_keys(highlighted_business_keys), "highlighted")
        sel = business_key_str(selected_business_key)
        n_selected = mark({sel} if sel is not None else set(), "selected")
        hov = business_key_str(hovered_business_key)
        n_hovered = mark({hov} if hov is not None else set(), "hovered")

        dimming = filter_matched_business_keys is not None
        n_matched = 0
        if dimming:
            n_matched = mark(_keys(filter_matched_business_keys), "filterMatch")

        for pid in sorted(patches):
            self.adapter.apply_feature_state(layer_key, pid, patches[pid])
        self.adapter.set_dimming(layer_key, dimming)

        return ReconcileResult(
            layer_key=layer_key,
            generation_id=generation.generation_id,
            writes=len(patches),
            selected=n_selected,
            highlighted=n_highlighted,
            filter_matched=n_matched,
            hovered=n_hovered,
            unresolved=unresolved,
        )
