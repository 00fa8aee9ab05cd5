from __future__ import annotations

import json
import queue
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, IO, Iterator

from .exceptions import ConfigurationError
from .models import LogRecord
from .utils import ms_to_iso

Event = Dict[str, Any]
Sink = Callable[[Event], None]

JSON_PARSE_FAILURE_TAG = "_jsonparsefailure"


class Codec(ABC):
    name: str

    @abstractmethod
    def decode(self, data: bytes) -> Iterator[Event]:
        ...


class PlainCodec(Codec):
    name = "plain"

    def decode(self, data: bytes) -> Iterator[Event]:
        yield {"message": data.decode("utf-8", errors="replace")}


class JsonCodec(Codec):
    """One event per JSON object; arrays fan out into one event per element.

    Undecodable payloads are kept as plain messages and tagged.
    """

    name = "json"

    def decode(self, data: bytes) -> Iterator[Event]:
        text = data.decode("utf-8", errors="replace")
        try:
            obj = json.loads(text)
        except ValueError:
            yield {"message": text, "tags": [JSON_PARSE_FAILURE_TAG]}
            return
        items = obj if isinstance(obj, list) else [obj]
        for item in items:
            if isinstance(item, dict):
                yield dict(item)
            else:
                yield {"message": item}


def build_codec(name: str) -> Codec:
    if name == "plain":
        return PlainCodec()
    if name == "json":
        return JsonCodec()
    raise ConfigurationError(f"Unknown codec: {name}")


class EventEmitter(ABC):
    @abstractmethod
    def emit(self, record: LogRecord, group: str) -> int:
        """Deliver the events decoded from ``record``; return how many."""
        ...


class CodecEmitter(EventEmitter):
    def __init__(self, codec: Codec, sink: Sink):
        self.codec = codec
        self.sink = sink

    def emit(self, record: LogRecord, group: str) -> int:
        n = 0
        for event in self.codec.decode(record.message):
            event["@timestamp"] = ms_to_iso(record.timestamp)
            event["cloudwatch_logs"] = {
                "ingestion_time": ms_to_iso(record.ingestion_time),
                "log_group": group,
                "log_stream": record.log_stream_name,
                "event_id": record.event_id,
            }
            self.sink(event)
            n += 1
        return n


def queue_sink(q: "queue.Queue[Event]") -> Sink:
    return q.put


class JsonLinesSink:
    """Writes each event as one JSON line and flushes, so pipes see it at once."""

    def __init__(self, stream: IO[str]):
        self.stream = stream

    def __call__(self, event: Event) -> None:
        self.stream.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
        self.stream.flush()
