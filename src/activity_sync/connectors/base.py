from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from activity_sync.core.models import (
    FetcherConfig,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)

DEFAULT_TIMEOUT_SECONDS = 20.0
USER_AGENT = "activity-sync"


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length, ending with '...' when shortened."""
    if len(text) <= max_length:
        return text
    return f"{text[:max_length - 3]}..."


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (with a trailing Z) or epoch milliseconds into aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def lookback_cutoff(config: FetcherConfig, now: Optional[datetime] = None) -> datetime:
    """Oldest instant still inside the lookback window."""
    return (now or datetime.now(timezone.utc)) - timedelta(hours=config.lookback_hours)


def json_or_none(resp: httpx.Response) -> Any:
    """Decoded JSON body, or None when the body is not JSON."""
    try:
        return resp.json()
    except ValueError:
        return None


def epoch_reset_to_iso(value: Optional[str]) -> str:
    """Render an epoch-seconds rate limit reset header as ISO-8601, or 'unknown'."""
    if not value:
        return "unknown"
    try:
        instant = datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return "unknown"
    return instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# PUBLIC_INTERFACE
class ActivityFetcher(ABC):
    """Fetches a provider feed and maps its items into normalized activities."""

    provider: Provider

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def feed_identity(self, provider_user_id: str, provider_username: Optional[str]) -> str:
        """Identifier the provider's feed endpoint expects."""
        return provider_user_id

    # PUBLIC_INTERFACE
    @abstractmethod
    async def fetch_activities(self, access_token: str, provider_user_id: str, config: FetcherConfig) -> FetchResult:
        """Fetch recent activities. HTTP failures come back as a failed FetchResult, never raised."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def map_to_processed_activity(self, raw: RawProviderActivity) -> ProcessedActivity:
        """Pure mapping from a raw activity to its staged form."""
        raise NotImplementedError
