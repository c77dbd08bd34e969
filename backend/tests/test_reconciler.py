from __future__ import annotations

from layers.loaders import mint_generation
from layers.registry import get_registry
from render.adapter import RenderSurfaceAdapter
from render.surface import RecordingSurface
from selection.reconciler import FeatureStateReconciler


def _gen(gid: int, keys: list) -> object:
    features = [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [-97.75 + i * 0.001, 30.25]},
            "properties": {"attomId": k},
        }
        for i, k in enumerate(keys)
    ]
    return mint_generation("properties", gid, features, business_key_field="attomId")


def _setup(gen):
    surface = RecordingSurface()
    adapter = RenderSurfaceAdapter(surface, get_registry())
    adapter.sync_layer(get_registry().get("properties"), gen, True, 1.0)
    return surface, adapter, FeatureStateReconciler(adapter)


def test_selection_and_highlights_map_to_positional_ids():
    gen = _gen(1, [1000, 1001, 1002])
    surface, _, rec = _setup(gen)
    res = rec.reconcile("properties", gen, "1001", ["1000", "1002"], None)

    assert surface.flagged("properties", "selected") == {1}
    assert surface.flagged("properties", "highlighted") == {0, 2}
    assert res.writes == 3
    assert res.selected == 1
    assert res.highlighted == 2
    assert res.unresolved == 0
    assert not res.skipped


def test_flags_for_one_feature_are_merged_into_one_write():
    gen = _gen(1, [1000, 1001])
    surface, _, rec = _setup(gen)
    rec.reconcile("properties", gen, 1000, [1000.0], [1000], hovered_business_key="1000")

    assert surface.calls["set_feature_state"] == 1
    assert surface.state_of("properties", 0) == {
        "selected": True,
        "highlighted": True,
        "hovered": True,
        "filterMatch": True,
    }


def test_clearing_signals_removes_all_state():
    gen = _gen(1, [1000, 1001, 1002])
    surface, _, rec = _setup(gen)
    rec.reconcile("properties", gen, "1001", ["1000"], ["1002"])
    res = rec.reconcile("properties", gen, None, [], None)

    assert res.writes == 0
    assert all(surface.state_of("properties", pid) == {} for pid in range(3))


def test_stale_generation_is_skipped_without_surface_calls():
    gen1 = _gen(1, [1000, 1001])
    surface, _, rec = _setup(gen1)
    before = surface.calls.copy()
    res = rec.reconcile("properties", _gen(2, [1001, 1000]), "1001", [], None)

    assert res.skipped
    assert surface.calls == before


def test_filter_matches_enable_dimming():
    gen = _gen(1, [1000, 1001, 1002])
    surface, _, rec = _setup(gen)
    rec.reconcile("properties", gen, None, [], ["1001"])
    assert surface.flagged("properties", "filterMatch") == {1}
    dimmed = surface.paint("properties-circle", "circle-opacity")
    assert any(isinstance(x, list) and x[:1] == ["!"] for x in dimmed)

    # No filter active: nothing is dimmed.
    rec.reconcile("properties", gen, None, [], None)
    plain = surface.paint("properties-circle", "circle-opacity")
    assert not any(isinstance(x, list) and x[:1] == ["!"] for x in plain)


def test_empty_filter_match_set_dims_everything():
    gen = _gen(1, [1000, 1001])
    surface, adapter, rec = _setup(gen)
    res = rec.reconcile("properties", gen, None, [], [])
    assert res.filter_matched == 0
    assert surface.flagged("properties", "filterMatch") == set()
    assert any(
        isinstance(x, list) and x[:1] == ["!"]
        for x in surface.paint("properties-circle", "circle-opacity")
    )


def test_unknown_keys_are_counted_as_unresolved():
    gen = _gen(1, [1000])
    surface, _, rec = _setup(gen)
    res = rec.reconcile("properties", gen, "9999", ["1000", "8888"], None)
    assert res.unresolved == 2
    assert surface.flagged("properties", "highlighted") == {0}
    assert surface.flagged("properties", "selected") == set()


def test_duplicate_business_keys_flag_every_feature():
    gen = _gen(1, [1000, 1000, 1001])
    surface, _, rec = _setup(gen)
    res = rec.reconcile("properties", gen, "1000", None, None)
    assert surface.flagged("properties", "selected") == {0, 1}
    assert res.selected == 2
