from __future__ import annotations

from typing import Dict, Optional

import httpx

from activity_sync.connectors.base import DEFAULT_TIMEOUT_SECONDS


class LinkedInClient:
    """LinkedIn v2 REST client for UGC posts authored by a member (Rest.li 2.0 protocol)."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or "https://api.linkedin.com/v2"
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "X-Restli-Protocol-Version": "2.0.0",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def list_ugc_posts(self, author_urn: str, start: int = 0, count: int = 50) -> httpx.Response:
        """GET /ugcPosts?q=authors&authors={urn}; newest first."""
        params = {"q": "authors", "authors": author_urn, "start": str(start), "count": str(count)}
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport) as client:
            return await client.get(self._url("/ugcPosts"), params=params)
