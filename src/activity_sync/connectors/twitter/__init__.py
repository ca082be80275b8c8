from .fetcher import TwitterActivityFetcher

__all__ = ["TwitterActivityFetcher"]
