from __future__ import annotations


class CloudWatchTailError(RuntimeError):
    """Base error for the tailer."""


class ConfigurationError(CloudWatchTailError, ValueError):
    """Raised at setup time for invalid settings. The worker never starts."""


class FetchError(CloudWatchTailError):
    """A remote FilterLogEvents call failed. Fatal for the current cycle only."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ThrottledError(FetchError):
    """The remote service asked us to slow down. The cycle ends early."""
