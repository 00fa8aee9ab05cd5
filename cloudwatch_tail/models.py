from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class LogRecord:
    message: bytes
    timestamp: int
    ingestion_time: int
    log_stream_name: str
    event_id: str

    @classmethod
    def from_api(cls, event: Dict[str, Any]) -> "LogRecord":
        """Build a record from one entry of a FilterLogEvents response."""
        message = event.get("message") or ""
        if isinstance(message, str):
            message = message.encode("utf-8")
        return cls(
            message=message,
            timestamp=int(event.get("timestamp") or 0),
            ingestion_time=int(event.get("ingestionTime") or 0),
            log_stream_name=str(event.get("logStreamName") or ""),
            event_id=str(event.get("eventId") or ""),
        )


@dataclass(frozen=True)
class FetchCursor:
    """Exactly one of start_time / next_token is set."""

    start_time: int | None = None
    next_token: str | None = None

    def __post_init__(self) -> None:
        if (self.start_time is None) == (self.next_token is None):
            raise ValueError("FetchCursor needs exactly one of start_time or next_token")

    @classmethod
    def at(cls, start_time: int) -> "FetchCursor":
        return cls(start_time=int(start_time))

    @classmethod
    def after(cls, next_token: str) -> "FetchCursor":
        return cls(next_token=next_token)


@dataclass
class FetchPage:
    records: List[LogRecord] = field(default_factory=list)
    next_token: str | None = None


@dataclass
class CycleStats:
    group: str
    pages: int = 0
    records: int = 0
    events: int = 0
    throttled: bool = False
    failed: bool = False
    checkpoint: int | None = None
