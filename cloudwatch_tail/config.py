from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple

from .exceptions import ConfigurationError
from .start_position import StartPosition, Beginning, parse_start_position

CODECS = ("plain", "json")


def env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v is not None else default


def _env_number(name: str, default: float | None, cast=float):
    raw = env(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name}={raw!r} is not a valid number") from None


def split_streams(value: str | None) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(s.strip() for s in value.split(",") if s.strip())


@dataclass(frozen=True)
class Settings:
    log_group: str
    log_streams: Tuple[str, ...] = ()
    start_position: StartPosition = field(default_factory=Beginning)
    interval_sec: float = 60.0
    sincedb_path: str | None = None
    data_dir: str | None = None
    codec: str = "plain"
    log_level: str = "INFO"

    # Remote calls
    aws_region: str | None = None
    aws_profile: str | None = None
    endpoint_url: str | None = None
    page_limit: int | None = None
    requests_per_sec: float | None = None
    connect_timeout_sec: float = 10.0
    read_timeout_sec: float = 30.0
    max_retries: int = 3

    # Extra sleep after throttled cycles
    backoff_base_sec: float = 2.0
    backoff_max_sec: float = 60.0
    backoff_jitter: float = 0.25

    def __post_init__(self) -> None:
        if not self.log_group:
            raise ConfigurationError("log_group is required")
        object.__setattr__(self, "start_position", parse_start_position(self.start_position))
        object.__setattr__(self, "log_streams", tuple(self.log_streams or ()))
        if self.interval_sec < 0:
            raise ConfigurationError(f"interval must be >= 0, got {self.interval_sec}")
        if self.codec not in CODECS:
            raise ConfigurationError(f"codec '{self.codec}' is invalid! Must be one of: {', '.join(CODECS)}")
        if self.page_limit is not None and self.page_limit <= 0:
            raise ConfigurationError(f"page_limit must be positive, got {self.page_limit}")
        if self.requests_per_sec is not None and self.requests_per_sec <= 0:
            raise ConfigurationError(f"requests_per_sec must be positive, got {self.requests_per_sec}")


def load_settings(**overrides) -> Settings:
    """Settings from CWTAIL_* environment variables; non-None overrides win."""
    values = dict(
        log_group=env("CWTAIL_LOG_GROUP", "") or "",
        log_streams=split_streams(env("CWTAIL_LOG_STREAMS")),
        start_position=env("CWTAIL_START_POSITION", "beginning"),
        interval_sec=_env_number("CWTAIL_INTERVAL", 60.0),
        sincedb_path=env("CWTAIL_SINCEDB_PATH") or None,
        data_dir=env("CWTAIL_DATA_DIR") or None,
        codec=(env("CWTAIL_CODEC", "plain") or "plain").lower(),
        log_level=(env("CWTAIL_LOG_LEVEL", "INFO") or "INFO").upper(),
        aws_region=env("AWS_REGION") or env("AWS_DEFAULT_REGION") or None,
        aws_profile=env("AWS_PROFILE") or None,
        endpoint_url=env("CWTAIL_ENDPOINT_URL") or None,
        page_limit=_env_number("CWTAIL_PAGE_LIMIT", None, int),
        requests_per_sec=_env_number("CWTAIL_REQUESTS_PER_SEC", None),
        backoff_base_sec=_env_number("CWTAIL_BACKOFF_BASE_SEC", 2.0),
        backoff_max_sec=_env_number("CWTAIL_BACKOFF_MAX_SEC", 60.0),
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    if not values["log_group"]:
        raise ConfigurationError("Missing CWTAIL_LOG_GROUP (or --group).")
    return Settings(**values)
