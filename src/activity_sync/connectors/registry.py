from __future__ import annotations

from typing import Dict, Optional

import httpx

from activity_sync.connectors.base import ActivityFetcher, DEFAULT_TIMEOUT_SECONDS
from activity_sync.connectors.github import GitHubActivityFetcher
from activity_sync.connectors.linkedin import LinkedInActivityFetcher
from activity_sync.connectors.twitter import TwitterActivityFetcher
from activity_sync.core.models import Provider


class FetcherRegistry:
    """In-memory map of provider -> activity fetcher."""

    def __init__(self):
        self._fetchers: Dict[Provider, ActivityFetcher] = {}

    # PUBLIC_INTERFACE
    def register(self, fetcher: ActivityFetcher, provider: Optional[Provider] = None) -> None:
        """Register a fetcher under its own provider (or an explicit one)."""
        self._fetchers[provider or fetcher.provider] = fetcher

    # PUBLIC_INTERFACE
    def get(self, provider: Provider) -> Optional[ActivityFetcher]:
        """Fetcher for a provider, or None if none is registered."""
        return self._fetchers.get(provider)


# PUBLIC_INTERFACE
def default_registry(
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FetcherRegistry:
    """Registry with the GitHub, Twitter and LinkedIn fetchers sharing one timeout/transport."""
    registry = FetcherRegistry()
    registry.register(GitHubActivityFetcher(timeout=timeout, transport=transport))
    registry.register(TwitterActivityFetcher(timeout=timeout, transport=transport))
    registry.register(LinkedInActivityFetcher(timeout=timeout, transport=transport))
    return registry
