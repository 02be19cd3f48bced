from __future__ import annotations

import json
from datetime import date
from typing import Any
from urllib.parse import urlsplit


def normalize_date(value: str) -> str:
    """Reduce an ISO date or timestamp to its YYYY-MM-DD part."""
    s = str(value or "").strip()
    day = s.split("T", 1)[0].split(" ", 1)[0]
    return date.fromisoformat(day).isoformat()


def date_parts(value: str) -> tuple[int, int, int]:
    d = date.fromisoformat(normalize_date(value))
    return d.year, d.month, d.day


def normalize_hostname(value: str) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        return ""
    if "://" not in raw:
        raw = "//" + raw
    try:
        host = urlsplit(raw).hostname or ""
    except ValueError:
        host = raw.lstrip("/").split("/", 1)[0]
    host = host.rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if s == "":
        return default
    try:
        return int(float(s))
    except ValueError:
        return default


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if s == "":
        return default
    try:
        return float(s)
    except ValueError:
        return default


def safe_div(n: float, d: float) -> float | None:
    if d == 0:
        return None
    return n / d


def round_money(value: float) -> float:
    return float(f"{value:.2f}")


def excerpt(text: str, limit: int = 500) -> str:
    return (text or "")[:limit]


def parse_json_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    s = str(value).strip()
    if not s:
        return []
    try:
        parsed = json.loads(s)
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []
