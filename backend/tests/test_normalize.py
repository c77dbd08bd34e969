from __future__ import annotations

import pytest

from layers.normalize import (
    FLOOD_ALIASES,
    ZONE_CATEGORY_COLORS,
    categorize_zone_code,
    extract_field,
    flood_color,
    flood_risk,
    is_sfha,
    normalize_features,
    normalize_flood_zone,
    normalize_properties,
    parse_diameter,
    zone_color,
    zoning_legend,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("SF-3", "single_family"),
        ("SF-2-NP", "single_family"),
        ("MF-4", "multi_family"),
        ("LO", "office"),
        ("GR-CO", "commercial"),
        ("IP", "industrial"),
        ("P", "parks"),
        ("AG", "agricultural"),
        ("PUD", "planned"),
        ("DMU", "mixed_use"),
        ("CS-MU-V-CO-NP", "mixed_use"),
        ("sf-3", "single_family"),
    ],
)
def test_zone_codes_map_to_categories(raw, expected):
    assert categorize_zone_code(raw) == expected


@pytest.mark.parametrize("raw", ["XYZ-999", "UNZ", "", "   ", None, 42])
def test_unrecognised_zone_codes_are_other(raw):
    assert categorize_zone_code(raw) == "other"


def test_zone_categorisation_is_deterministic_and_colored():
    for raw in ["SF-3", "CS-MU-V-CO-NP", "XYZ-999", "PUD", None]:
        first = categorize_zone_code(raw)
        assert all(categorize_zone_code(raw) == first for _ in range(5))
        assert zone_color(first) in ZONE_CATEGORY_COLORS.values()
    assert zone_color("not-a-category") == ZONE_CATEGORY_COLORS["other"]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("AE", "AE"),
        ("ae", "AE"),
        ("Zone AE", "AE"),
        ("A", "A"),
        ("A99", "A"),
        ("A5", "AE"),
        ("V12", "VE"),
        ("X", "X"),
        ("C", "X"),
        ("B", "X500"),
        ("100-Year Flood Hazard Area", "AE"),
        ("FLOODWAY", "AE"),
        ("0.2 PCT ANNUAL CHANCE FLOOD HAZARD", "X500"),
        ("500-year floodplain", "X500"),
        ("AREA OF MINIMAL FLOOD HAZARD", "X"),
        ("Coastal high hazard", "VE"),
        ("Undetermined", "D"),
        ("", "UNKNOWN"),
        (None, "UNKNOWN"),
        ("garbage", "UNKNOWN"),
    ],
)
def test_flood_zone_normalization(raw, expected):
    assert normalize_flood_zone(raw) == expected


def test_flood_risk_and_colors():
    assert flood_risk("AE") == "high"
    assert flood_risk("X500") == "moderate"
    assert flood_risk("X") == "minimal"
    assert flood_risk("UNKNOWN") == "unknown"
    assert flood_risk("nonsense") == "unknown"
    assert flood_color("AE") == "#ef4444"
    assert is_sfha("VE") is True
    assert is_sfha("X") is False


def test_extract_field_is_case_insensitive_and_skips_empty_values():
    props = {"fema_flood_zone": "  ", "Fld_Zone": "AE", "ZONE": "X"}
    assert extract_field(props, FLOOD_ALIASES) == "AE"
    assert extract_field({}, FLOOD_ALIASES) is None
    assert extract_field(None, FLOOD_ALIASES) is None
    assert extract_field({"other": 1}, FLOOD_ALIASES) is None


@pytest.mark.parametrize(
    "raw,expected",
    [(12, 12.0), ("8 in", 8.0), ('24"', 24.0), ("6.5", 6.5), (0, None), ("abc", None), (None, None)],
)
def test_parse_diameter(raw, expected):
    assert parse_diameter(raw) == expected


def test_normalize_properties_stamps_category_attributes():
    z = normalize_properties("zoning", {"ZONING_ZTYPE": "SF-3", "id": 7})
    assert z["_zone_code"] == "SF-3"
    assert z["_zone_category"] == "single_family"
    assert z["_zone_color"] == ZONE_CATEGORY_COLORS["single_family"]
    assert z["id"] == 7

    f = normalize_properties("flood", {"FLD_ZONE": "AE"})
    assert f["_flood_code"] == "AE"
    assert f["_flood_risk"] == "high"
    assert f["is_sfha"] is True

    d = normalize_properties("diameter", {"PIPE_SIZE": "16"})
    assert d["_diameter"] == 16.0

    # No normalizer: attributes untouched.
    assert normalize_properties(None, {"a": 1}) == {"a": 1}


def test_normalize_features_keeps_geometry_and_order():
    features = [
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [0, 0]}, "properties": {"ZONING": "MF-2"}},
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [1, 1]}, "properties": {}},
    ]
    out = normalize_features("zoning", features)
    assert [f["properties"]["_zone_category"] for f in out] == ["multi_family", "other"]
    assert out[1]["geometry"] == features[1]["geometry"]
    # Input is not mutated.
    assert "_zone_category" not in features[0]["properties"]


def test_zoning_legend_covers_every_category():
    legend = zoning_legend()
    assert {row["category"] for row in legend} == set(ZONE_CATEGORY_COLORS)
