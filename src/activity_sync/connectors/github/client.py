from __future__ import annotations

from typing import Dict, Optional

import httpx

from activity_sync.connectors.base import DEFAULT_TIMEOUT_SECONDS, USER_AGENT

GITHUB_API_VERSION = "2022-11-28"


class GitHubClient:
    """GitHub REST API client for a user's public event stream (Bearer OAuth token)."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or "https://api.github.com"
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def list_user_events(self, login: str, page: int = 1, per_page: int = 100) -> httpx.Response:
        """GET /users/{login}/events; newest first."""
        url = self._url(f"/users/{login}/events")
        params = {"per_page": per_page, "page": page}
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport) as client:
            return await client.get(url, params=params)
