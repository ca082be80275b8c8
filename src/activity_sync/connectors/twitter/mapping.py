from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from activity_sync.connectors.base import epoch_reset_to_iso, parse_timestamp, truncate
from activity_sync.core.models import (
    ACTIVITY_POINTS,
    FetchErrorKind,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)

MAX_TITLE_LENGTH = 280

VIDEO_KEYWORDS = ("video", "youtube", "tutorial", "watch", "streaming", "twitch", "loom")

ENGAGEMENT_LOW = 10
ENGAGEMENT_MEDIUM = 50
ENGAGEMENT_HIGH = 200


def _has_reference(tweet: Dict[str, Any], kind: str) -> bool:
    return any(ref.get("type") == kind for ref in tweet.get("referenced_tweets") or [])


def total_engagement(metrics: Dict[str, Any]) -> int:
    return sum(int(metrics.get(k) or 0) for k in ("like_count", "retweet_count", "reply_count", "quote_count"))


def is_video_content(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in VIDEO_KEYWORDS)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def engagement_points(base: int, engagement: int) -> int:
    """Scale base points by engagement: >=200 x1.5, >=50 x1.25, <10 x0.75."""
    if engagement >= ENGAGEMENT_HIGH:
        return round_half_up(base * 1.5)
    if engagement >= ENGAGEMENT_MEDIUM:
        return round_half_up(base * 1.25)
    if engagement < ENGAGEMENT_LOW:
        return round_half_up(base * 0.75)
    return base


# PUBLIC_INTERFACE
def map_tweet(tweet: Dict[str, Any], username: str) -> Optional[RawProviderActivity]:
    """Map an original tweet or quote tweet; retweets and replies give None."""
    if _has_reference(tweet, "retweeted") or _has_reference(tweet, "replied_to"):
        return None
    timestamp = parse_timestamp(tweet.get("created_at"))
    if timestamp is None:
        return None
    metrics = tweet.get("public_metrics") or {}
    tweet_id = str(tweet.get("id"))
    return RawProviderActivity(
        provider_activity_id=tweet_id,
        timestamp=timestamp,
        title=truncate(tweet.get("text") or "", MAX_TITLE_LENGTH),
        url=f"https://twitter.com/{username}/status/{tweet_id}",
        metadata={
            "like_count": int(metrics.get("like_count") or 0),
            "retweet_count": int(metrics.get("retweet_count") or 0),
            "reply_count": int(metrics.get("reply_count") or 0),
            "quote_count": int(metrics.get("quote_count") or 0),
            "total_engagement": total_engagement(metrics),
            "is_quote_tweet": _has_reference(tweet, "quoted"),
        },
    )


def resolve_username(body: Dict[str, Any], user_id: str) -> str:
    """Username from the author_id expansion, else the numeric id."""
    for user in (body.get("includes") or {}).get("users") or []:
        if str(user.get("id")) == str(user_id) and user.get("username"):
            return user["username"]
    return user_id


# PUBLIC_INTERFACE
def to_processed_activity(raw: RawProviderActivity) -> ProcessedActivity:
    activity_type = "video_tutorial" if is_video_content(raw.title) else "blog_post"
    engagement = int(raw.metadata.get("total_engagement") or 0)
    return ProcessedActivity(
        provider=Provider.TWITTER,
        provider_activity_id=raw.provider_activity_id,
        activity_type=activity_type,
        title=raw.title,
        description=None,
        url=raw.url or None,
        suggested_points=engagement_points(ACTIVITY_POINTS[activity_type], engagement),
        event_date=raw.timestamp,
    )


# PUBLIC_INTERFACE
def error_result(status: int, headers: Mapping[str, str], body: Any) -> FetchResult:
    """Classify a non-OK Twitter response. ``body`` is the decoded JSON or None."""
    if status == 401:
        return FetchResult.failure(FetchErrorKind.UNAUTHORIZED, "Twitter token is unauthorized or expired")
    if status == 429:
        reset = epoch_reset_to_iso(headers.get("x-rate-limit-reset"))
        return FetchResult.failure(FetchErrorKind.RATE_LIMITED, f"Twitter API rate limit exceeded. Resets at {reset}")
    if status == 403:
        return FetchResult.failure(FetchErrorKind.FORBIDDEN, "Twitter API access forbidden. Check app permissions.")
    message = None
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
        message = message or body.get("detail")
    kind = FetchErrorKind.NOT_FOUND if status == 404 else FetchErrorKind.HTTP_ERROR
    return FetchResult.failure(kind, f"Twitter API error: {message or f'HTTP {status}'}")
