from __future__ import annotations

import hashlib
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_datetime(ms: int) -> datetime:
    ms = int(ms)
    return datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)


def ms_to_iso(ms: int) -> str:
    dt = ms_to_datetime(ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def sincedb_name(log_group: str, log_streams: Iterable[str]) -> str:
    """Deterministic sincedb file name for a group and its stream list."""
    return ".sincedb_" + md5_hex(log_group + ",".join(log_streams))
