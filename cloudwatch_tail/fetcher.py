from __future__ import annotations

import logging
from typing import Any, Dict, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .exceptions import FetchError, ThrottledError
from .fetcher_base import PaginatedFetcher, stream_filter
from .logging_utils import get_logger, log_json
from .models import FetchCursor, FetchPage, LogRecord
from .rate_limit import TokenBucket

logger = get_logger(__name__)

THROTTLE_CODES = {
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
}


def build_logs_client(settings: Settings) -> Any:
    session = boto3.session.Session(profile_name=settings.aws_profile, region_name=settings.aws_region)
    cfg = Config(
        connect_timeout=settings.connect_timeout_sec,
        read_timeout=settings.read_timeout_sec,
        retries={"mode": "standard", "max_attempts": settings.max_retries},
    )
    return session.client("logs", endpoint_url=settings.endpoint_url, config=cfg)


class CloudWatchLogsFetcher(PaginatedFetcher):
    def __init__(self, client: Any, limit: int | None = None, bucket: TokenBucket | None = None):
        self.client = client
        self.limit = limit
        self.bucket = bucket

    def _params(self, group: str, log_streams: Sequence[str] | None, cursor: FetchCursor) -> Dict[str, Any]:
        params: Dict[str, Any] = {"logGroupName": group}
        if cursor.next_token is not None:
            params["nextToken"] = cursor.next_token
        else:
            params["startTime"] = cursor.start_time
        names = stream_filter(log_streams)
        if names:
            params["logStreamNames"] = names
        if self.limit:
            params["limit"] = self.limit
        return params

    def fetch_page(self, group: str, log_streams: Sequence[str] | None, cursor: FetchCursor) -> FetchPage:
        if self.bucket is not None and not self.bucket.acquire():
            # stop requested while waiting for a request slot
            return FetchPage()

        params = self._params(group, log_streams, cursor)
        try:
            resp = self.client.filter_log_events(**params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in THROTTLE_CODES:
                raise ThrottledError(f"FilterLogEvents throttled for {group}", code=code) from e
            raise FetchError(f"FilterLogEvents failed for {group}: {code or e}", code=code or None) from e
        except BotoCoreError as e:
            raise FetchError(f"FilterLogEvents failed for {group}: {e}") from e

        records = [LogRecord.from_api(ev) for ev in resp.get("events") or []]
        next_token = resp.get("nextToken") or None
        log_json(
            logger,
            logging.DEBUG,
            "page_fetched",
            log_group=group,
            records=len(records),
            has_next=next_token is not None,
            start_time=params.get("startTime"),
        )
        return FetchPage(records=records, next_token=next_token)
