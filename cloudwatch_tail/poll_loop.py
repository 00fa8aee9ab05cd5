from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Dict, List, Sequence

from .checkpoints import CheckpointStore, LoadResult
from .emitter import EventEmitter
from .exceptions import ThrottledError
from .fetcher_base import PaginatedFetcher
from .logging_utils import get_logger, log_json
from .models import CycleStats
from .start_position import StartPosition, determine_start_position
from .utils import now_ms

logger = get_logger(__name__)


class PollLoop:
    """Tails one log group: drain pages, emit, checkpoint, sleep, repeat.

    The in-memory checkpoint map belongs to this loop. The store only sees
    it through ``load_result()`` at open and ``save()`` after every page.
    Offsets only move forward, to ``record.timestamp + 1``.
    """

    def __init__(
        self,
        *,
        group: str,
        log_streams: Sequence[str],
        fetcher: PaginatedFetcher,
        emitter: EventEmitter,
        store: CheckpointStore,
        start_position: StartPosition,
        interval_sec: float = 60.0,
        stop_event: threading.Event | None = None,
        clock: Callable[[], int] = now_ms,
        backoff_base_sec: float = 2.0,
        backoff_max_sec: float = 60.0,
        backoff_jitter: float = 0.25,
    ) -> None:
        self.group = group
        self.log_streams = tuple(log_streams)
        self.fetcher = fetcher
        self.emitter = emitter
        self.store = store
        self.start_position = start_position
        self.interval_sec = float(interval_sec)
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.backoff_base_sec = backoff_base_sec
        self.backoff_max_sec = backoff_max_sec
        self.backoff_jitter = backoff_jitter

        self.priority: List[str] = []
        self.throttle_streak = 0
        self._checkpoints: Dict[str, int] = {}
        self._opened = False

    # -- state -----------------------------------------------------------

    def open(self) -> LoadResult:
        result = self.store.load_result()
        self._checkpoints = dict(result.entries)
        self._opened = True
        log_json(
            logger,
            logging.INFO,
            "checkpoint_loaded",
            path=str(self.store.path),
            status=result.status.value,
            log_group=self.group,
            offset=self._checkpoints.get(self.group),
        )
        return result

    def checkpoint(self, group: str | None = None) -> int | None:
        return self._checkpoints.get(group or self.group)

    def checkpoints(self) -> Dict[str, int]:
        return dict(self._checkpoints)

    def _advance(self, group: str, offset: int) -> None:
        if offset > self._checkpoints.get(group, 0):
            self._checkpoints[group] = offset

    def _requeue(self, group: str) -> None:
        if group in self.priority:
            self.priority.remove(group)
        self.priority.append(group)

    # -- stop ------------------------------------------------------------

    def stop(self) -> None:
        self.stop_event.set()

    def stopped(self) -> bool:
        return self.stop_event.is_set()

    # -- polling ---------------------------------------------------------

    def _drain(self, stats: CycleStats) -> None:
        group = stats.group
        determine_start_position(group, self._checkpoints, self.start_position, self.clock)

        for page in self.fetcher.iter_pages(group, self.log_streams, self._checkpoints[group]):
            stats.pages += 1
            for record in page.records:
                stats.events += self.emitter.emit(record, group)
                stats.records += 1
                self._advance(group, record.timestamp + 1)
            self.store.save(self._checkpoints)
            if self.stopped():
                log_json(logger, logging.INFO, "cycle_interrupted", log_group=group, pages=stats.pages)
                return

        self._requeue(group)

    def run_once(self) -> CycleStats:
        """One poll cycle. Steady-state errors are logged, never raised."""
        if not self._opened:
            self.open()

        stats = CycleStats(group=self.group)
        try:
            self._drain(stats)
        except ThrottledError as e:
            stats.throttled = True
            self.throttle_streak += 1
            log_json(logger, logging.DEBUG, "rate_limited", log_group=self.group, code=e.code, streak=self.throttle_streak, pages=stats.pages)
        except Exception as e:
            stats.failed = True
            log_json(logger, logging.ERROR, "cycle_failed", log_group=self.group, error=str(e), error_type=type(e).__name__, pages=stats.pages)
        else:
            self.throttle_streak = 0

        stats.checkpoint = self._checkpoints.get(self.group)
        log_json(logger, logging.INFO, "cycle_complete", **stats.__dict__)
        return stats

    def next_delay(self) -> float:
        if self.throttle_streak <= 0:
            return self.interval_sec
        backoff = min(self.backoff_base_sec * (2 ** (self.throttle_streak - 1)), self.backoff_max_sec)
        jitter = random.uniform(0, self.backoff_jitter * backoff) if self.backoff_jitter > 0 else 0.0
        return self.interval_sec + backoff + jitter

    def run(self) -> None:
        """Poll until ``stop()``; the interval sleep wakes immediately on stop."""
        if not self._opened:
            self.open()
        log_json(logger, logging.INFO, "poll_loop_started", log_group=self.group, log_streams=list(self.log_streams), interval_sec=self.interval_sec)

        while not self.stopped():
            self.run_once()
            if self.stopped():
                break
            self.stop_event.wait(self.next_delay())

        log_json(logger, logging.INFO, "poll_loop_stopped", log_group=self.group, offset=self.checkpoint())
