from .fetcher import GitHubActivityFetcher

__all__ = ["GitHubActivityFetcher"]
