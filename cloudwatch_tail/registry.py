from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from .checkpoints import CheckpointStore, default_sincedb_path
from .config import Settings
from .emitter import CodecEmitter, EventEmitter, Sink, build_codec
from .fetcher import CloudWatchLogsFetcher, build_logs_client
from .fetcher_base import PaginatedFetcher
from .logging_utils import get_logger, log_json
from .poll_loop import PollLoop
from .rate_limit import TokenBucket

logger = get_logger(__name__)


def resolve_sincedb_path(settings: Settings) -> str:
    if settings.sincedb_path:
        return settings.sincedb_path
    path = default_sincedb_path(settings.log_group, settings.log_streams, data_dir=settings.data_dir)
    log_json(logger, logging.INFO, "sincedb_path_derived", sincedb_path=str(path), log_group=settings.log_group)
    return str(path)


def build_poll_loop(
    settings: Settings,
    sink: Sink | None = None,
    *,
    emitter: EventEmitter | None = None,
    fetcher: PaginatedFetcher | None = None,
    client_factory: Callable[[Settings], Any] = build_logs_client,
    stop_event: Optional[threading.Event] = None,
) -> PollLoop:
    """Wire a PollLoop from settings.

    Everything that can be a ConfigurationError (start position, codec,
    sincedb location) is checked before a remote client is created.
    """
    if emitter is None:
        if sink is None:
            raise ValueError("build_poll_loop needs a sink or an emitter")
        emitter = CodecEmitter(build_codec(settings.codec), sink)
    sincedb_path = resolve_sincedb_path(settings)
    stop_event = stop_event or threading.Event()

    if fetcher is None:
        bucket = None
        if settings.requests_per_sec:
            bucket = TokenBucket(rate_per_sec=settings.requests_per_sec, burst=1, stop_event=stop_event)
        fetcher = CloudWatchLogsFetcher(client_factory(settings), limit=settings.page_limit, bucket=bucket)

    log_json(
        logger,
        logging.DEBUG,
        "poll_loop_registered",
        log_group=settings.log_group,
        log_streams=list(settings.log_streams),
        start_position=str(settings.start_position),
        sincedb_path=sincedb_path,
    )
    return PollLoop(
        group=settings.log_group,
        log_streams=settings.log_streams,
        fetcher=fetcher,
        emitter=emitter,
        store=CheckpointStore(sincedb_path),
        start_position=settings.start_position,
        interval_sec=settings.interval_sec,
        stop_event=stop_event,
        backoff_base_sec=settings.backoff_base_sec,
        backoff_max_sec=settings.backoff_max_sec,
        backoff_jitter=settings.backoff_jitter,
    )
