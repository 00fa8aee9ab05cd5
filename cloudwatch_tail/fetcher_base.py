from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Sequence

from .models import FetchCursor, FetchPage


def stream_filter(log_streams: Sequence[str] | None) -> Optional[List[str]]:
    """Stream names to send, or None for every stream in the group.

    A single configured stream is not sent as a filter.
    """
    if log_streams is not None and len(log_streams) > 1:
        return list(log_streams)
    return None


class PaginatedFetcher(ABC):
    @abstractmethod
    def fetch_page(self, group: str, log_streams: Sequence[str] | None, cursor: FetchCursor) -> FetchPage:
        """Return one page. ``page.next_token`` is None on the last page.

        Raises ThrottledError when rate limited and FetchError on any other
        remote failure. Must NOT touch checkpoints.
        """
        ...

    def iter_pages(self, group: str, log_streams: Sequence[str] | None, start_offset: int) -> Iterator[FetchPage]:
        cursor = FetchCursor.at(start_offset)
        while True:
            page = self.fetch_page(group, log_streams, cursor)
            yield page
            if not page.next_token:
                return
            cursor = FetchCursor.after(page.next_token)
