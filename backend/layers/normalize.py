from __future__ import annotations

import re
from typing import Any, Iterable, Literal, Mapping

ZoneCategory = Literal[
    "single_family",
    "multi_family",
    "office",
    "commercial",
    "industrial",
    "mixed_use",
    "planned",
    "parks",
    "agricultural",
    "other",
]
FloodCode = Literal["A", "AE", "AH", "AO", "VE", "X500", "X", "D", "UNKNOWN"]
FloodRisk = Literal["high", "moderate", "minimal", "unknown"]

# Provider attribute names differ per jurisdiction; first non-empty alias wins.
ZONING_ALIASES: tuple[str, ...] = (
    "ZONING_ZTYPE",
    "ZONING_ZTYP",
    "ZONING",
    "ZONE_CODE",
    "ZONE_DESIG",
    "ZoningDesignation",
    "ZONING_BASE",
    "ZONE_DESCR",
    "ZONE_TYPE",
    "ZONINGCODE",
)
FLOOD_ALIASES: tuple[str, ...] = (
    "FEMA_FLOOD_ZONE",
    "FLD_ZONE",
    "FLOOD_ZONE",
    "ZONE_",
    "FloodZone",
    "ZONE",
    "SFHA_TF",
    "ZONE_SUBTY",
    "FLOODZONE",
    "FZONE",
)
DIAMETER_ALIASES: tuple[str, ...] = (
    "DIAMETER",
    "WATERDIAMETER",
    "PIPE_DIAMETER",
    "PIPESIZE",
    "PIPE_SIZE",
    "DIAM",
    "SIZE_",
    "NOMINALDIAMETER",
    "SIZE",
    "WATERDIAMETER_INCH",
    "DIAMETER_INCHES",
    "PIPESIZE_",
    "PIPE_DIA",
)

ZONE_CATEGORY_COLORS: dict[str, str] = {
    "single_family": "#93c5fd",
    "multi_family": "#c084fc",
    "office": "#fbbf24",
    "commercial": "#f87171",
    "industrial": "#94a3b8",
    "mixed_use": "#f472b6",
    "planned": "#a78bfa",
    "parks": "#4ade80",
    "agricultural": "#a3e635",
    "other": "#d1d5db",
}

ZONE_CATEGORY_LABELS: dict[str, str] = {
    "single_family": "Single Family",
    "multi_family": "Multi-Family",
    "office": "Office",
    "commercial": "Commercial",
    "industrial": "Industrial",
    "mixed_use": "Mixed Use",
    "planned": "Planned / PUD",
    "parks": "Parks / Public",
    "agricultural": "Agricultural",
    "other": "Other",
}

FLOOD_RISK: dict[str, FloodRisk] = {
    "A": "high",
    "AE": "high",
    "AH": "high",
    "AO": "high",
    "VE": "high",
    "X500": "moderate",
    "D": "moderate",
    "X": "minimal",
    "UNKNOWN": "unknown",
}

FLOOD_RISK_COLORS: dict[str, str] = {
    "high": "#ef4444",
    "moderate": "#f97316",
    "minimal": "#3b82f6",
    "unknown": "#9ca3af",
}

# Token start / end around a zoning code component ("CS-MU-V-CO-NP", "W/LO", "PUD (1234)").
_T = r"(?:^|[-\s/_(])"
_B = r"(?=$|[-\s/_()])"

# Rule order matters: combining districts (mixed use, PUD) override the base district.
_ZONE_RULES: tuple[tuple[ZoneCategory, re.Pattern[str]], ...] = tuple(
    (cat, re.compile(rx))
    for cat, rx in (
        ("mixed_use", rf"{_T}(?:DMU|MU|V|TOD|TND|PDA|MXD?|MXU){_B}"),
        ("planned", rf"{_T}(?:PUD|PDD|PD){_B}"),
        ("single_family", rf"^(?:SF\d*[A-Z]?|RR|LA|RS|RE|SR|R-?1){_B}"),
        ("multi_family", rf"^(?:MF\d*|MH|MHP|TF|TH|R-?[2-6]){_B}"),
        ("office", rf"^(?:LO|GO|NO|OF|O|W){_B}"),
        ("commercial", rf"^(?:LR|GR|CR|CS|CH|CBD|GC|LC|NC|C-?\d*){_B}"),
        ("industrial", rf"^(?:IP|MI|LI|HI|I-?\d*|M-?[1-3]){_B}"),
        ("parks", rf"^(?:P|PK|PF|OS|PUB){_B}"),
        ("agricultural", rf"^(?:AG|A|RA){_B}"),
    )
)

# Free-text descriptions are checked before exact codes.
_FLOOD_TEXT_RULES: tuple[tuple[FloodCode, re.Pattern[str]], ...] = tuple(
    (code, re.compile(rx))
    for code, rx in (
        ("AE", r"FLOODWAY|100[\s-]*YEAR|\b1\s*(?:%|PCT|PERCENT)"),
        ("VE", r"COASTAL|VELOCITY"),
        ("X", r"UNSHADED|MINIMAL"),
        ("X500", r"500[\s-]*YEAR|0\.2\s*(?:%|PCT|PERCENT)|SHADED|LEVEE"),
        ("D", r"UNDETERMINED|POSSIBLE BUT"),
    )
)

_FLOOD_EXACT: dict[str, FloodCode] = {
    "A": "A",
    "AE": "AE",
    "AH": "AH",
    "AO": "AO",
    "A99": "A",
    "AR": "A",
    "V": "VE",
    "VE": "VE",
    "X500": "X500",
    "B": "X500",
    "X": "X",
    "C": "X",
    "D": "D",
}
_A_NUMBERED = re.compile(r"^A(?:[1-9]|[12]\d|30)$")
_V_NUMBERED = re.compile(r"^V(?:[1-9]|[12]\d|30)$")


def _clean(raw: Any) -> str:
    if raw is None:
        return ""
    return re.sub(r"\s+", " ", str(raw)).strip().upper()


def categorize_zone_code(raw: Any) -> ZoneCategory:
    code = _clean(raw)
    if not code:
        return "other"
    for category, rx in _ZONE_RULES:
        if rx.search(code):
            return category
    return "other"


def zone_color(category: str) -> str:
    return ZONE_CATEGORY_COLORS.get(category, ZONE_CATEGORY_COLORS["other"])


def normalize_flood_zone(raw: Any) -> FloodCode:
    s = _clean(raw)
    if not s:
        return "UNKNOWN"
    for code, rx in _FLOOD_TEXT_RULES:
        if rx.search(s):
            return code

    compact = re.sub(r"[^A-Z0-9]", "", s)
    if compact.startswith("ZONE"):
        compact = compact[4:]
    hit = _FLOOD_EXACT.get(compact)
    if hit is not None:
        return hit
    if _A_NUMBERED.match(compact):
        return "AE"
    if _V_NUMBERED.match(compact):
        return "VE"
    return "UNKNOWN"


def flood_risk(code: str) -> FloodRisk:
    return FLOOD_RISK.get(code, "unknown")


def flood_color(code: str) -> str:
    return FLOOD_RISK_COLORS[flood_risk(code)]


def is_sfha(code: str) -> bool:
    # Special Flood Hazard Area == the 1%-annual-chance zones.
    return flood_risk(code) == "high"


def extract_field(props: Mapping[str, Any] | None, aliases: Iterable[str]) -> str | None:
    """
    First non-empty value among `aliases`, matched case-insensitively against `props` keys.
    """
    if not props:
        return None
    by_upper: dict[str, list[str]] = {}
    for k in props.keys():
        by_upper.setdefault(str(k).upper(), []).append(k)
    for alias in aliases:
        for k in by_upper.get(alias.upper(), []):
            v = props.get(k)
            if v is None:
                continue
            s = str(v).strip()
            if s:
                return s
    return None


def parse_diameter(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw == raw and raw > 0 else None
    m = re.search(r"\d+(?:\.\d+)?", str(raw))
    if not m:
        return None
    v = float(m.group(0))
    return v if v > 0 else None


def normalize_properties(kind: str | None, props: Mapping[str, Any]) -> dict[str, Any]:
    """
    Copy of `props` with the normalized category attributes for `kind` stamped on.
    """
    out = dict(props or {})
    if kind == "zoning":
        code = extract_field(out, ZONING_ALIASES) or ""
        cat = categorize_zone_code(code)
        out["_zone_code"] = code
        out["_zone_category"] = cat
        out["_zone_color"] = zone_color(cat)
    elif kind == "flood":
        raw = extract_field(out, FLOOD_ALIASES) or ""
        code = normalize_flood_zone(raw)
        out["_flood_zone"] = raw
        out["_flood_code"] = code
        out["_flood_risk"] = flood_risk(code)
        out["_flood_color"] = flood_color(code)
        out["is_sfha"] = is_sfha(code)
    elif kind == "diameter":
        out["_diameter"] = parse_diameter(extract_field(out, DIAMETER_ALIASES))
    return out


def normalize_features(kind: str | None, features: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if kind is None:
        return list(features)
    return [
        {**f, "properties": normalize_properties(kind, f.get("properties") or {})}
        for f in features
    ]


def zoning_legend() -> list[dict[str, str]]:
    return [
        {"category": cat, "label": ZONE_CATEGORY_LABELS[cat], "color": color}
        for cat, color in ZONE_CATEGORY_COLORS.items()
    ]
