"""Shared utilities for schema validation."""

from datetime import datetime, timezone
from typing import Any


def parse_mongo_datetime(v: Any) -> Any:
    """Normalize a stored timestamp to an aware UTC datetime.

    Accepts Extended JSON (`{'$date': '2024-11-01T08:00:00Z'}` or
    `{'$date': {'$numberLong': '1730448000000'}}`) as written by mongoimport,
    and naive datetimes as returned by a client without `tz_aware`.
    """
    if isinstance(v, dict) and "$date" in v:
        raw = v["$date"]
        if isinstance(raw, dict) and "$numberLong" in raw:
            return datetime.fromtimestamp(int(raw["$numberLong"]) / 1000, tz=timezone.utc)
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        v = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    # Anything else is left to pydantic
    return v
