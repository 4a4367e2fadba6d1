from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Iterable, List

from photomap.common.types import PhotoRecord


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def iso_ms(epoch_s: float) -> str:
    """UTC ISO-8601 rendering of a unix time, millisecond precision, "Z" suffix."""
    dt = datetime.fromtimestamp(epoch_s, timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_now_ms() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def parse_iso8601(ts: str) -> datetime:
    """Parse a strict ISO-8601 timestamp with optional 'Z'."""
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def base36_token(length: int = 9) -> str:
    """Random lowercase base-36 token (record ids in the client store)."""
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def newest_first(records: Iterable[PhotoRecord]) -> List[PhotoRecord]:
    """Sort records by timestamp, most recent first."""
    return sorted(records, key=lambda r: parse_iso8601(r.timestamp), reverse=True)
