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
from .client import LinkedInClient
from .mapping import error_result, map_linkedin_post, to_processed_activity

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
MAX_PAGES = 5
PERSON_URN_PREFIX = "urn:li:person:"


class LinkedInActivityFetcher(ActivityFetcher):
    """Published shares and articles authored by the member (provider user id is the person URN)."""

    provider = Provider.LINKEDIN

    def __init__(self, timeout: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None, base_url: Optional[str] = None):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url

    def feed_identity(self, provider_user_id: str, provider_username: Optional[str]) -> str:
        # sign-in stores the OIDC sub; ugcPosts wants the person URN
        if provider_user_id.startswith("urn:li:"):
            return provider_user_id
        return f"{PERSON_URN_PREFIX}{provider_user_id}"

    async def fetch_activities(self, access_token: str, provider_user_id: str, config: FetcherConfig) -> FetchResult:
        client = LinkedInClient(access_token, base_url=self.base_url, timeout=self.timeout, transport=self.transport)
        cutoff = lookback_cutoff(config)
        count = min(config.max_results, MAX_PAGE_SIZE)
        activities: List[RawProviderActivity] = []
        start = 0
        try:
            for _ in range(MAX_PAGES):
                resp = await client.list_ugc_posts(provider_user_id, start=start, count=count)
                if resp.status_code >= 400:
                    return error_result(resp.status_code, json_or_none(resp))
                body = resp.json()
                if not isinstance(body, dict):
                    break
                posts = [p for p in body.get("elements") or [] if isinstance(p, dict)]
                if not posts:
                    break
                reached_cutoff = False
                for post in posts:
                    created = parse_timestamp((post.get("created") or {}).get("time"))
                    if created is None:
                        continue
                    if created < cutoff:
                        reached_cutoff = True
                        continue
                    activity = map_linkedin_post(post)
                    if activity:
                        activities.append(activity)
                    if len(activities) >= config.max_results:
                        break
                start += len(posts)
                total = (body.get("paging") or {}).get("total")
                if (
                    len(activities) >= config.max_results
                    or reached_cutoff
                    or len(posts) < count
                    or (total is not None and start >= int(total))
                ):
                    break
        except httpx.HTTPError as ex:
            logger.warning("linkedin_fetch_transport_error", extra={"error": str(ex)})
            return FetchResult.failure(FetchErrorKind.NETWORK_ERROR, str(ex) or "Unknown error fetching LinkedIn activities")
        except ValueError as ex:
            return FetchResult.failure(FetchErrorKind.HTTP_ERROR, f"LinkedIn API error: invalid response body ({ex})")
        return FetchResult(success=True, activities=activities[: config.max_results])

    def map_to_processed_activity(self, raw: RawProviderActivity) -> ProcessedActivity:
        return to_processed_activity(raw)
