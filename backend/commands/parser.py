from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal

IntentKind = Literal["layer", "filter", "clear-all"]
IntentAction = Literal["show", "hide", "set", "clear"]


@dataclass(frozen=True)
class CommandIntent:
    """
    A chat message recognised as a direct map command.

    - layer:     key=<layer key>, action=show|hide
    - filter:    key=<filter key>, action=set|clear, value=<predicate value>
    - clear-all: no key
    """

    kind: IntentKind
    key: str | None = None
    action: IntentAction | None = None
    value: Any = None
    confirmation: str = ""


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_SHOW = r"\b(show|display|turn on|enable|add|activate)\b"
_SHOW_OR_ASK = r"\b(show|display|turn on|enable|add|activate|what'?s|whats|what is)\b"
_HIDE = r"\b(hide|remove|turn off|disable|clear|deactivate)\b"
_AS_LAYER = r"\b(layer|overlay|map|on)\b"
_CLEAR = r"\b(remove|clear|hide|turn off|disable|reset)\b"
_FIND = r"\b(show|filter|find|display|highlight)\b"


def _layer_rules(
    nouns: str, *, ask: bool = False, no_prefix: bool = False, hide_nouns: str | None = None
) -> dict[str, list[re.Pattern[str]]]:
    hn = hide_nouns or nouns
    hide = [_rx(rf"{_HIDE}.*\b({hn})\b")]
    if no_prefix:
        hide.append(_rx(rf"\b(no|off)\b.*\b({hn})\b"))
    return {
        "hide": hide,
        "show": [
            _rx(rf"{_SHOW_OR_ASK if ask else _SHOW}.*\b({nouns})\b"),
            _rx(rf"\b({hn})\b.*{_AS_LAYER}"),
        ],
    }


# Overlay layers are checked before base layers; within a layer, hide before show.
OVERLAY_LAYER_RULES: dict[str, dict[str, list[re.Pattern[str]]]] = {
    "zoning_districts": _layer_rules(
        "zoning|(?<!flood )zone|(?<!flood )zones", ask=True, no_prefix=True
    ),
    "floodplains": _layer_rules(
        "flood|floodplain|floodplains|flood zone|flood zones|fema",
        ask=True,
        no_prefix=True,
    ),
    "water_lines": _layer_rules(
        "water|water line|water lines|water main|water mains|water infrastructure",
        hide_nouns="water|water line|water lines|water main|water mains",
    ),
    "wastewater_lines": _layer_rules(
        "sewer|wastewater|waste water|sewer line|sewer lines|sewer main|sewer mains",
        hide_nouns="sewer|wastewater|waste water|sewer line|sewer lines",
    ),
    "stormwater_lines": _layer_rules(
        "storm|stormwater|storm water|storm drain|storm drains|storm line|storm lines",
        hide_nouns="storm|stormwater|storm water|storm drain|storm drains",
    ),
}

BASE_LAYER_RULES: dict[str, dict[str, list[re.Pattern[str]]]] = {
    "parcels": {
        "hide": [_rx(rf"{_HIDE}.*\b(parcel|parcels|parcel boundar|boundaries|boundary)\b")],
        "show": [
            _rx(rf"{_SHOW}.*\b(parcel|parcels|parcel boundar|boundaries|boundary)\b"),
            _rx(rf"\b(parcel|parcels|boundar|boundaries)\b.*{_AS_LAYER}"),
        ],
    },
    "school_districts": _layer_rules(
        "school|schools|school district|school districts|school zone|school zones",
        hide_nouns="school|schools|school district|school districts",
    ),
}

LAYER_NAMES: dict[str, str] = {
    "zoning_districts": "Zoning",
    "floodplains": "Floodplains",
    "water_lines": "Water Lines",
    "wastewater_lines": "Sewer Lines",
    "stormwater_lines": "Stormwater",
    "parcels": "Parcel Boundaries",
    "school_districts": "School Districts",
}


@dataclass(frozen=True)
class FilterRule:
    key: str
    value: Any
    clear_value: Any
    label: str
    patterns: tuple[re.Pattern[str], ...]
    clear_patterns: tuple[re.Pattern[str], ...]


def _filter(
    key: str, value: Any, clear_value: Any, label: str, patterns: list[str], clear: list[str]
) -> FilterRule:
    return FilterRule(
        key=key,
        value=value,
        clear_value=clear_value,
        label=label,
        patterns=tuple(_rx(p) for p in patterns),
        clear_patterns=tuple(_rx(p) for p in clear),
    )


FILTER_RULES: tuple[FilterRule, ...] = (
    _filter(
        "hasForeclosure",
        True,
        False,
        "Foreclosure",
        [
            rf"{_FIND}.*\b(foreclosure|foreclosures|pre-?foreclosure|pre-?foreclosures)\b",
            r"\b(foreclosure|foreclosures)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(foreclosure|foreclosures)\b"],
    ),
    _filter(
        "absenteeOnly",
        True,
        False,
        "Absentee Owner",
        [
            rf"{_FIND}.*\b(absentee|absent|non-?owner|out of (state|town|area))\b",
            r"\b(absentee|absent)\b.*\b(owner|owners|owned|filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(absentee|absent)\b"],
    ),
    _filter(
        "ownerType",
        ["corporate"],
        [],
        "Corporate Owners",
        [
            rf"{_FIND}.*\b(corporate|corp|llc|company|companies)\b",
            r"\b(corporate|corp|llc|company)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(corporate|corp|llc|company)\b"],
    ),
    _filter(
        "inFloodZone",
        True,
        False,
        "In Flood Zone",
        [
            r"\b(filter|find|show|highlight)\b.*\b(in|within)\b.*\b(flood zone|flood|floodplain|fema)\b",
            r"\b(flood zone|floodplain|fema)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(flood)\b"],
    ),
    _filter(
        "distressScoreMin",
        "30",
        "",
        "Distressed (score >= 30)",
        [
            rf"{_FIND}.*\b(distress|distressed)\b",
            r"\b(distress|distressed)\b.*\b(filter|only|properties|score)\b",
        ],
        [rf"{_CLEAR}.*\b(distress|distressed)\b"],
    ),
    _filter(
        "highLtvOnly",
        True,
        False,
        "High LTV (>80%)",
        [
            rf"{_FIND}.*\b(high ltv|overleveraged|high leverage|underwater)\b",
            r"\b(high ltv|overleveraged)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(high ltv|overleveraged|leverage)\b"],
    ),
    _filter(
        "soldWithinDays",
        "365",
        "",
        "Recent Sales (last 12 months)",
        [
            rf"{_FIND}.*\b(recent sale|recent sales|recently sold|sold recently|recent transaction|recent transactions)\b",
            r"\b(recent sale|recent sales|recently sold)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(recent sale|recent sales|recently sold)\b"],
    ),
    _filter(
        "investorOnly",
        True,
        False,
        "Investor Purchases",
        [
            rf"{_FIND}.*\b(investor|investors)\b",
            r"\b(investor|investors)\b.*\b(filter|only|properties)\b",
        ],
        [rf"{_CLEAR}.*\b(investor|investors)\b"],
    ),
    _filter(
        "equityMin",
        "100000",
        "",
        "High Equity (>= $100K)",
        [rf"{_FIND}.*\b(high equity|equity rich|equity)\b"],
        [rf"{_CLEAR}.*\b(equity)\b"],
    ),
)

CLEAR_ALL_PATTERNS: tuple[re.Pattern[str], ...] = (
    _rx(r"\b(clear|reset|remove)\b.*\b(all|every)\b.*\b(filter|filters|layer|layers)\b"),
    _rx(r"\b(clear|reset|remove)\s+(the\s+|my\s+)?(filter|filters)\s*$"),
    _rx(r"\b(turn off|hide|remove)\b.*\b(all|every)\b.*\b(layer|layers)\b"),
)


def _match_layer(
    text: str, rules: dict[str, dict[str, list[re.Pattern[str]]]]
) -> CommandIntent | None:
    for key, by_action in rules.items():
        name = LAYER_NAMES.get(key, key)
        if any(p.search(text) for p in by_action["hide"]):
            return CommandIntent(
                kind="layer", key=key, action="hide", confirmation=f"{name} layer hidden."
            )
        if any(p.search(text) for p in by_action["show"]):
            return CommandIntent(
                kind="layer", key=key, action="show", confirmation=f"{name} layer is now visible."
            )
    return None


def parse(text: str | None) -> CommandIntent | None:
    """
    Recognise a layer / filter / clear-all command; None means "not a map command".
    """
    t = (text or "").strip()
    if not t:
        return None

    if any(p.search(t) for p in CLEAR_ALL_PATTERNS):
        return CommandIntent(kind="clear-all", confirmation="All filters and layers cleared.")

    intent = _match_layer(t, OVERLAY_LAYER_RULES) or _match_layer(t, BASE_LAYER_RULES)
    if intent is not None:
        return intent

    for rule in FILTER_RULES:
        if any(p.search(t) for p in rule.clear_patterns):
            return CommandIntent(
                kind="filter",
                key=rule.key,
                action="clear",
                value=rule.clear_value,
                confirmation=f"{rule.label} filter cleared.",
            )
        if any(p.search(t) for p in rule.patterns):
            return CommandIntent(
                kind="filter",
                key=rule.key,
                action="set",
                value=rule.value,
                confirmation=f"{rule.label} filter applied.",
            )
    return None
