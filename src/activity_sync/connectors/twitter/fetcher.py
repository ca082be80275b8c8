from __future__ import annotations

from typing import List, Optional

import httpx

from activity_sync.connectors.base import ActivityFetcher, json_or_none, lookback_cutoff, parse_timestamp
from activity_sync.core.logging import get_logger
from activity_sync.core.models import (
    FetchErrorKind,
    FetcherConfig,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)
from .client import TwitterClient
from .mapping import error_result, map_tweet, resolve_username, to_processed_activity

logger = get_logger(__name__)

MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100
MAX_PAGES = 5


class TwitterActivityFetcher(ActivityFetcher):
    """Original tweets and quote tweets from the user's timeline."""

    provider = Provider.TWITTER

    def __init__(self, timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None, base_url: Optional[str] = None):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url

    async def fetch_activities(self, access_token: str, provider_user_id: str, config: FetcherConfig) -> FetchResult:
        client = TwitterClient(access_token, base_url=self.base_url, timeout=self.timeout, transport=self.transport)
        cutoff = lookback_cutoff(config)
        start_time = cutoff.strftime("%Y-%m-%dT%H:%M:%SZ")
        page_size = max(MIN_PAGE_SIZE, min(config.max_results, MAX_PAGE_SIZE))
        activities: List[RawProviderActivity] = []
        next_token: Optional[str] = None
        try:
            for _ in range(MAX_PAGES):
                resp = await client.list_user_tweets(provider_user_id, start_time, page_size, pagination_token=next_token)
                if resp.status_code >= 400:
                    return error_result(resp.status_code, resp.headers, json_or_none(resp))
                body = resp.json()
                if not isinstance(body, dict):
                    break
                tweets = [t for t in body.get("data") or [] if isinstance(t, dict)]
                if not tweets:
                    break
                username = resolve_username(body, provider_user_id)
                for tweet in tweets:
                    created = parse_timestamp(tweet.get("created_at"))
                    if created is None or created < cutoff:
                        continue
                    activity = map_tweet(tweet, username)
                    if activity:
                        activities.append(activity)
                    if len(activities) >= config.max_results:
                        break
                next_token = (body.get("meta") or {}).get("next_token")
                if len(activities) >= config.max_results or not next_token:
                    break
        except httpx.HTTPError as ex:
            logger.warning("twitter_fetch_transport_error", extra={"error": str(ex)})
            return FetchResult.failure(FetchErrorKind.NETWORK_ERROR, str(ex) or "Unknown error fetching Twitter activities")
        except ValueError as ex:
            return FetchResult.failure(FetchErrorKind.HTTP_ERROR, f"Twitter API error: invalid response body ({ex})")
        return FetchResult(success=True, activities=activities[: config.max_results])

    def map_to_processed_activity(self, raw: RawProviderActivity) -> ProcessedActivity:
        return to_processed_activity(raw)
