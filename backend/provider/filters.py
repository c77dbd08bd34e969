from __future__ import annotations

import re
from typing import Any, Mapping

# Filter key -> record attribute.
FLAG_FIELDS: dict[str, str] = {
    "absenteeOnly": "isAbsentee",
    "hasForeclosure": "hasForeclosure",
    "inFloodZone": "inFloodZone",
    "highLtvOnly": "highLtv",
    "investorOnly": "isInvestor",
}
LIST_FIELDS: dict[str, str] = {
    "ownerType": "ownerType",
    "assetClass": "assetClass",
}
MIN_FIELDS: dict[str, str] = {
    "yearBuiltMin": "yearBuilt",
    "valueMin": "value",
    "equityMin": "equity",
    "distressScoreMin": "distressScore",
}
MAX_FIELDS: dict[str, str] = {
    "yearBuiltMax": "yearBuilt",
    "valueMax": "value",
    "soldWithinDays": "lastSaleDays",
}
EXACT_FIELDS: dict[str, str] = {
    "zipCode": "zipCode",
}

_NUMERIC = re.compile(r"^-?\d+(?:\.\d+)?$")


def parse_filter_params(params: Mapping[str, str]) -> dict[str, Any]:
    """
    Query-string filters -> typed predicates. Unknown keys are ignored.
    """
    out: dict[str, Any] = {}
    for key, raw in params.items():
        value = str(raw).strip()
        if not value:
            continue
        if key in FLAG_FIELDS:
            out[key] = value.lower() in {"1", "true", "yes", "on"}
        elif key in LIST_FIELDS:
            out[key] = [v.strip() for v in value.split(",") if v.strip()]
        elif key in MIN_FIELDS or key in MAX_FIELDS:
            if _NUMERIC.match(value):
                out[key] = float(value)
        elif key in EXACT_FIELDS:
            out[key] = value
    return out


def _num(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def record_matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, want in filters.items():
        if key in FLAG_FIELDS:
            if want and not record.get(FLAG_FIELDS[key]):
                return False
        elif key in LIST_FIELDS:
            if want and str(record.get(LIST_FIELDS[key]) or "") not in set(want):
                return False
        elif key in MIN_FIELDS:
            v = _num(record.get(MIN_FIELDS[key]))
            if v is None or v < float(want):
                return False
        elif key in MAX_FIELDS:
            v = _num(record.get(MAX_FIELDS[key]))
            if v is None or v > float(want):
                return False
        elif key in EXACT_FIELDS:
            if str(record.get(EXACT_FIELDS[key]) or "") != str(want):
                return False
    return True
