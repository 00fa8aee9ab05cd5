"""Where an unseen log group starts reading.

A policy is parsed once, when settings are built, into one of three variants:

- ``Beginning``: offset 0, read all retained history.
- ``End``: offset = now, only records arriving from here on.
- ``RelativeSeconds(n)``: offset = now - n seconds (any integer, so a
  negative n starts that far in the future).

Anything else is a ``ConfigurationError`` raised before the remote service is
ever contacted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, MutableMapping, Union

from .exceptions import ConfigurationError
from .logging_utils import get_logger, log_json
from .utils import now_ms

logger = get_logger(__name__)


@dataclass(frozen=True)
class Beginning:
    def __str__(self) -> str:
        return "beginning"


@dataclass(frozen=True)
class End:
    def __str__(self) -> str:
        return "end"


@dataclass(frozen=True)
class RelativeSeconds:
    seconds: int

    def __str__(self) -> str:
        return str(self.seconds)


StartPosition = Union[Beginning, End, RelativeSeconds]


def parse_start_position(value: Any) -> StartPosition:
    if isinstance(value, (Beginning, End, RelativeSeconds)):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError("No start_position specified!")
    # bool is an int subclass; True must not mean "1 second ago"
    if isinstance(value, bool):
        raise ConfigurationError(_invalid(value))
    if isinstance(value, int):
        return RelativeSeconds(value)
    if isinstance(value, str):
        s = value.strip()
        if s == "beginning":
            return Beginning()
        if s == "end":
            return End()
        try:
            return RelativeSeconds(int(s))
        except ValueError:
            raise ConfigurationError(_invalid(value)) from None
    raise ConfigurationError(_invalid(value))


def _invalid(value: Any) -> str:
    return f"start_position '{value}' is invalid! Must be `beginning`, `end`, or an integer."


def resolve(policy: StartPosition, now: int) -> int:
    """Offset in epoch milliseconds for ``policy`` at wall-clock ``now`` (ms)."""
    if isinstance(policy, Beginning):
        return 0
    if isinstance(policy, End):
        return int(now)
    if isinstance(policy, RelativeSeconds):
        return int(now) - policy.seconds * 1000
    raise ConfigurationError(_invalid(policy))


def determine_start_position(
    group: str,
    checkpoints: MutableMapping[str, int],
    policy: StartPosition,
    clock: Callable[[], int] = now_ms,
) -> bool:
    """Seed ``checkpoints[group]`` from ``policy`` unless an entry already exists.

    Returns True when an entry was seeded. A persisted offset always wins.
    """
    if group in checkpoints:
        return False
    offset = resolve(policy, clock())
    checkpoints[group] = offset
    log_json(logger, logging.INFO, "start_position_resolved", log_group=group, policy=str(policy), offset=offset)
    return True
