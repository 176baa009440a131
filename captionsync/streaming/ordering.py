# coding=utf-8
from __future__ import annotations

import math
import re
import time
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Tuple

SEGMENT_NAME_PATTERN = re.compile(r"[^_\s]+_(\d{8})_(\d{6})_(\d{3})")


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def _parse_created_at(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if math.isfinite(value) else None
    text = str(raw).strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    return dt.timestamp() * 1000.0


def parse_name_timestamp(name: str) -> Optional[float]:
    """
    Decode `<prefix>_<YYYYMMDD>_<HHMMSS>_<mmm>` into epoch milliseconds (local time).
    """
    match = SEGMENT_NAME_PATTERN.search(str(name or ""))
    if not match:
        return None
    date, clock, millis = match.groups()
    try:
        dt = datetime(
            int(date[0:4]),
            int(date[4:6]),
            int(date[6:8]),
            int(clock[0:2]),
            int(clock[2:4]),
            int(clock[4:6]),
        )
    except ValueError:
        return None
    return float(round(dt.timestamp()) * 1000 + int(millis))


def segment_order(
    info: Optional[Mapping[str, Any]],
    now_ms: Optional[Callable[[], float]] = None,
) -> float:
    """
    Monotonic sort key for one segment.

    Precedence: explicit ``created_at``, then the timestamp encoded in the
    segment id, then wall-clock arrival. Never raises.
    """
    clock = now_ms or _wall_clock_ms
    if not info:
        return float(clock())
    created = _parse_created_at(info.get("created_at"))
    if created is not None:
        return created
    name = info.get("name") or info.get("id") or ""
    encoded = parse_name_timestamp(str(name))
    if encoded is not None:
        return encoded
    return float(clock())


def sort_key(order: float, segment_id: str) -> Tuple[float, str]:
    return (float(order), str(segment_id or ""))
