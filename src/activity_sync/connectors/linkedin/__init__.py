from .fetcher import LinkedInActivityFetcher

__all__ = ["LinkedInActivityFetcher"]
