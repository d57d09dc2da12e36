from __future__ import annotations

import math
import re
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Tuple
from zoneinfo import ZoneInfo

from bson import ObjectId


# PUBLIC_INTERFACE
def is_valid_object_id(value: Any) -> bool:
    """
    Return True when value is a 24-character hexadecimal string, the only
    identifier shape the store accepts.
    """
    return isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value)


def valid_object_ids(ids: Iterable[Any]) -> List[str]:
    """Keep only well-formed ids, preserving order."""
    return [i for i in ids if is_valid_object_id(i)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def total_pages(total: int, limit: int) -> int:
    """Number of pages needed to show `total` items `limit` at a time."""
    if limit <= 0:
        return 0
    return math.ceil(total / limit)


def page_skip(page: int, limit: int) -> int:
    return (page - 1) * limit


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round halves away from zero for non-negative values (2.5 -> 3), unlike round()."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def substring_filter(text: str, fields: Tuple[str, ...] = ("title", "description")) -> Dict[str, Any]:
    """
    Build a case-insensitive literal substring match across `fields`, OR-ed.
    The text is escaped so regex metacharacters match themselves.
    """
    pattern = re.escape(text)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


# PUBLIC_INTERFACE
def day_window(now: datetime, tz_name: str) -> Tuple[datetime, datetime]:
    """
    Return [midnight, next midnight) of the calendar day containing `now`
    in timezone `tz_name`, both as aware UTC datetimes.
    """
    tz = ZoneInfo(tz_name)
    local_day = now.astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
