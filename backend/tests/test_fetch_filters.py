from __future__ import annotations

from fetch.filters import (
    NO_FILTERS,
    clean_filters,
    default_filters,
    filter_signature,
    filters_to_params,
)


def test_defaults_have_no_active_predicates():
    assert clean_filters(default_filters()) == {}
    assert filter_signature(default_filters()) == NO_FILTERS
    assert filter_signature(None) == NO_FILTERS
    assert filter_signature({}) == NO_FILTERS


def test_default_filters_are_independent_copies():
    a = default_filters()
    a["ownerType"].append("corporate")
    assert default_filters()["ownerType"] == []


def test_clean_filters_normalizes_values():
    cleaned = clean_filters(
        {
            "ownerType": ["trust", "corporate", "trust", ""],
            "yearBuiltMin": " 1990 ",
            "valueMax": "250000.5",
            "zipCode": "",
            "absenteeOnly": False,
            "hasForeclosure": True,
            "armsLengthOnly": True,
            "equityMin": None,
        }
    )
    assert cleaned == {
        "ownerType": ["corporate", "trust"],
        "yearBuiltMin": 1990,
        "valueMax": 250000.5,
        "hasForeclosure": True,
    }


def test_signature_ignores_order_and_inactive_values():
    a = {**default_filters(), "ownerType": ["trust", "corporate"], "hasForeclosure": True}
    b = {"hasForeclosure": True, "ownerType": ["corporate", "trust"], "zipCode": ""}
    assert filter_signature(a) == filter_signature(b)
    assert filter_signature(a) != NO_FILTERS
    assert filter_signature(a) != filter_signature({**b, "hasForeclosure": False})
    assert len(filter_signature(a)) == 16


def test_filters_to_params():
    params = filters_to_params(
        {"ownerType": ["trust", "corporate"], "absenteeOnly": True, "distressScoreMin": "30"}
    )
    assert params == {"ownerType": "corporate,trust", "absenteeOnly": "true", "distressScoreMin": "30"}
    assert filters_to_params(default_filters()) == {}
