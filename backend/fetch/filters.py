from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Mapping

NO_FILTERS = "none"

# Host filter panel defaults; a predicate equal to its default is "not active".
DEFAULT_FILTERS: dict[str, Any] = {
    "assetClass": [],
    "ownerType": [],
    "absenteeOnly": False,
    "hasForeclosure": False,
    "inFloodZone": False,
    "highLtvOnly": False,
    "investorOnly": False,
    "armsLengthOnly": True,
    "yearBuiltMin": "",
    "yearBuiltMax": "",
    "valueMin": "",
    "valueMax": "",
    "equityMin": "",
    "distressScoreMin": "",
    "soldWithinDays": "",
    "zipCode": "",
}

_NUMERIC = re.compile(r"^-?\d+(?:\.\d+)?$")


def default_filters() -> dict[str, Any]:
    return {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULT_FILTERS.items()}


def clean_filters(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Active predicates only: empty values and values equal to their default are dropped,
    numeric strings become numbers, list values are de-duplicated and sorted.
    """
    out: dict[str, Any] = {}
    for key, value in (filters or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            items = sorted({str(v) for v in value if v is not None and str(v).strip()})
            if not items:
                continue
            value = items
        elif isinstance(value, str):
            value = value.strip()
            if not value:
                continue
            if _NUMERIC.match(value):
                value = float(value) if "." in value else int(value)
        if key in DEFAULT_FILTERS and value == DEFAULT_FILTERS[key]:
            continue
        if isinstance(value, bool) and key not in DEFAULT_FILTERS and not value:
            continue
        out[str(key)] = value
    return out


def filter_signature(filters: Mapping[str, Any] | None) -> str:
    """
    Stable digest of the active predicate set; two filter states with the same active
    predicates share a signature.
    """
    cleaned = clean_filters(filters)
    if not cleaned:
        return NO_FILTERS
    payload = json.dumps(cleaned, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]


def filters_to_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    """
    Query-string form of the active predicates (`ownerType=corporate,trust`, `absenteeOnly=true`).
    """
    params: dict[str, str] = {}
    for key, value in clean_filters(filters).items():
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        elif isinstance(value, list):
            params[key] = ",".join(value)
        else:
            params[key] = str(value)
    return params
