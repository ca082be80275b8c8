from __future__ import annotations

from typing import Dict, Optional

import httpx

from activity_sync.connectors.base import DEFAULT_TIMEOUT_SECONDS

TWEET_FIELDS = "created_at,public_metrics,referenced_tweets,author_id"


class TwitterClient:
    """Twitter/X API v2 client for a user's timeline (OAuth 2.0 user token)."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or "https://api.twitter.com/2"
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def list_user_tweets(
        self,
        user_id: str,
        start_time: str,
        max_results: int,
        pagination_token: Optional[str] = None,
    ) -> httpx.Response:
        """GET /users/{id}/tweets with the author expansion for the username."""
        url = self._url(f"/users/{user_id}/tweets")
        params: Dict[str, str] = {
            "tweet.fields": TWEET_FIELDS,
            "expansions": "author_id",
            "user.fields": "username",
            "max_results": str(max_results),
            "start_time": start_time,
        }
        if pagination_token:
            params["pagination_token"] = pagination_token
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport) as client:
            return await client.get(url, params=params)
