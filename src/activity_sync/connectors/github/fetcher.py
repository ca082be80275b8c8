from __future__ import annotations

from typing import List, Optional

import httpx

from activity_sync.connectors.base import ActivityFetcher, lookback_cutoff, parse_timestamp
from activity_sync.core.logging import get_logger
from activity_sync.core.models import (
    FetchErrorKind,
    FetcherConfig,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)
from .client import GitHubClient
from .mapping import error_result, map_github_event, to_processed_activity

logger = get_logger(__name__)

# The events API serves at most 300 events (3 pages of 100).
MAX_PAGES = 3
PAGE_SIZE = 100


class GitHubActivityFetcher(ActivityFetcher):
    """Commits, opened PRs/issues and issue comments from a user's public events."""

    provider = Provider.GITHUB

    def __init__(self, timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None, base_url: Optional[str] = None):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url

    def feed_identity(self, provider_user_id: str, provider_username: Optional[str]) -> str:
        # /users/{x}/events is keyed by login
        return provider_username or provider_user_id

    async def fetch_activities(self, access_token: str, provider_user_id: str, config: FetcherConfig) -> FetchResult:
        client = GitHubClient(access_token, base_url=self.base_url, timeout=self.timeout, transport=self.transport)
        cutoff = lookback_cutoff(config)
        activities: List[RawProviderActivity] = []
        try:
            for page in range(1, MAX_PAGES + 1):
                resp = await client.list_user_events(provider_user_id, page=page, per_page=PAGE_SIZE)
                if resp.status_code >= 400:
                    return error_result(resp.status_code, resp.headers, resp.text)
                events = resp.json()
                if not isinstance(events, list) or not events:
                    break
                reached_cutoff = False
                for event in events:
                    if not isinstance(event, dict):
                        continue
                    created = parse_timestamp(event.get("created_at"))
                    if created is None:
                        continue
                    if created < cutoff:
                        reached_cutoff = True
                        continue
                    mapped = map_github_event(event)
                    if mapped:
                        activities.extend(mapped)
                    if len(activities) >= config.max_results:
                        break
                if len(activities) >= config.max_results or reached_cutoff or len(events) < PAGE_SIZE:
                    break
        except httpx.HTTPError as ex:
            logger.warning("github_fetch_transport_error", extra={"error": str(ex)})
            return FetchResult.failure(FetchErrorKind.NETWORK_ERROR, str(ex) or "Unknown error fetching GitHub activities")
        except ValueError as ex:
            return FetchResult.failure(FetchErrorKind.HTTP_ERROR, f"GitHub API error: invalid response body ({ex})")
        return FetchResult(success=True, activities=activities[: config.max_results])

    def map_to_processed_activity(self, raw: RawProviderActivity) -> ProcessedActivity:
        return to_processed_activity(raw)
