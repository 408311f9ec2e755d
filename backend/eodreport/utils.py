from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Iterable, Mapping, Optional


def normalize_client_key(value: Any) -> Optional[str]:
    """Return a stripped client key, or ``None`` for blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_client_map(values: Mapping[Any, Any]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for raw_key, raw_name in values.items():
        key = normalize_client_key(raw_key)
        if not key:
            continue
        name = str(raw_name).strip() if raw_name is not None else ""
        normalized[key] = name or key
    return normalized


def coerce_report_date(value: Any) -> Any:
    """Reduce timestamp-like report dates (``2024-01-05 17:02:11 EST``) to the calendar date part."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return text
        return text.split("T", 1)[0].split(" ", 1)[0]
    return value


def format_hours(value: Any) -> str:
    """Render an hour value the way it was entered: ``2`` not ``2.0``."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def sum_hours(times: Iterable[Any]) -> float:
    return float(sum(float(value) for value in times))
