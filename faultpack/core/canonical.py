"""Deterministic value normalization and timestamp helpers."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import math
from typing import Any


def utc_isoformat(moment: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string with a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    as_utc = moment.astimezone(timezone.utc)
    return as_utc.isoformat(timespec="microseconds").replace("+00:00", "Z")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime) as an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        parse_target = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(parse_target)
        except ValueError as error:
            raise ValueError(f"Invalid timestamp: {value!r}") from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_json_safe(value: Any, *, max_depth: int = 8) -> Any:
    """Convert host values into plain JSON-compatible data.

    Unknown objects collapse to ``repr`` so nothing loosely typed survives the
    capture boundary.
    """
    return _to_json_safe(value, depth=0, max_depth=max_depth)


def _to_json_safe(value: Any, *, depth: int, max_depth: int) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return str(value)
        return value
    if depth >= max_depth:
        return repr(value)
    if isinstance(value, dict):
        return {
            str(key): _to_json_safe(item, depth=depth + 1, max_depth=max_depth)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        if isinstance(value, (set, frozenset)):
            items.sort(key=repr)
        return [_to_json_safe(item, depth=depth + 1, max_depth=max_depth) for item in items]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return utc_isoformat(value)
    if isinstance(value, BaseException):
        return f"{value.__class__.__name__}: {value}"
    return repr(value)


def canonical_json(value: Any, *, indent: int | None = None) -> str:
    """Serialize a value to stable JSON (sorted keys, ASCII only)."""
    if indent is None:
        return json.dumps(
            value,
            ensure_ascii=True,
            sort_keys=True,
            separators=(",", ":"),
        )
    return json.dumps(value, ensure_ascii=True, sort_keys=True, indent=indent)
