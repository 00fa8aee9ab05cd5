from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class TokenBucket:
    """Paces FilterLogEvents calls under ``rate_per_sec``.

    Waiting happens on ``stop_event`` so a stop request never sits behind
    the bucket. ``acquire`` returns False when it was interrupted.
    """

    rate_per_sec: float
    burst: int = 1
    stop_event: threading.Event = field(default_factory=threading.Event)
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self.capacity = float(max(self.burst, 1))
        self.tokens = self.capacity
        self.last = self.clock()

    def acquire(self, tokens: float = 1.0) -> bool:
        while True:
            now = self.clock()
            elapsed = now - self.last
            self.last = now
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            sleep_for = (tokens - self.tokens) / max(self.rate_per_sec, 1e-9)
            if self.stop_event.wait(min(max(sleep_for, 0.01), 2.0)):
                return False
