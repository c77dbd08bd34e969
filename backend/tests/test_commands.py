from __future__ import annotations

import pytest

from commands.parser import parse


@pytest.mark.parametrize(
    "text,key,action",
    [
        ("show zoning", "zoning_districts", "show"),
        ("what is the zoning here?", "zoning_districts", "show"),
        ("no zoning please", "zoning_districts", "hide"),
        ("hide the flood layer", "floodplains", "hide"),
        ("show FEMA flood zones", "floodplains", "show"),
        ("show sewer lines", "wastewater_lines", "show"),
        ("turn off water mains", "water_lines", "hide"),
        ("display storm drains", "stormwater_lines", "show"),
        ("show parcel boundaries", "parcels", "show"),
        ("hide school districts", "school_districts", "hide"),
    ],
)
def test_layer_commands(text, key, action):
    intent = parse(text)
    assert intent is not None
    assert (intent.kind, intent.key, intent.action) == ("layer", key, action)


def test_layer_confirmations():
    assert parse("hide zoning").confirmation == "Zoning layer hidden."
    assert parse("show sewer lines").confirmation == "Sewer Lines layer is now visible."


@pytest.mark.parametrize(
    "text,key,value",
    [
        ("show me foreclosures", "hasForeclosure", True),
        ("find absentee owners", "absenteeOnly", True),
        ("find corporate owned properties", "ownerType", ["corporate"]),
        ("show distressed properties", "distressScoreMin", "30"),
        ("highlight recently sold", "soldWithinDays", "365"),
        ("show investor purchases", "investorOnly", True),
        ("find high equity homes", "equityMin", "100000"),
    ],
)
def test_filter_commands(text, key, value):
    intent = parse(text)
    assert intent is not None
    assert (intent.kind, intent.key, intent.action, intent.value) == ("filter", key, "set", value)


def test_filter_clear_commands():
    intent = parse("remove foreclosure filter")
    assert (intent.kind, intent.key, intent.action, intent.value) == (
        "filter",
        "hasForeclosure",
        "clear",
        False,
    )
    assert intent.confirmation == "Foreclosure filter cleared."
    assert parse("show me foreclosures").confirmation == "Foreclosure filter applied."


@pytest.mark.parametrize("text", ["clear all filters", "reset all layers", "clear filters", "hide all layers"])
def test_clear_all(text):
    intent = parse(text)
    assert intent is not None
    assert intent.kind == "clear-all"
    assert intent.confirmation == "All filters and layers cleared."


@pytest.mark.parametrize("text", ["", "   ", None, "hello there", "what's the weather like?"])
def test_non_commands_return_none(text):
    assert parse(text) is None
