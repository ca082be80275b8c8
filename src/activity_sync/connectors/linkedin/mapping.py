from __future__ import annotations

from typing import Any, Dict, Optional

from activity_sync.connectors.base import parse_timestamp, truncate
from activity_sync.core.models import (
    ACTIVITY_POINTS,
    FetchErrorKind,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)

MAX_TITLE_LENGTH = 200
ARTICLE_BONUS_POINTS = 25
SHARE_CONTENT_KEY = "com.linkedin.ugc.ShareContent"


def post_url(urn: str) -> str:
    return f"https://www.linkedin.com/feed/update/{urn}"


def _share_content(post: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return (post.get("specificContent") or {}).get(SHARE_CONTENT_KEY)


def _media_type(content: Dict[str, Any]) -> Optional[str]:
    category = content.get("shareMediaCategory")
    if not category or category == "NONE":
        return None
    return category


def _ready_article(content: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    media = content.get("media") or []
    if not media:
        return None
    first = media[0] or {}
    if first.get("status") not in (None, "READY"):
        return None
    return first


# PUBLIC_INTERFACE
def map_linkedin_post(post: Dict[str, Any]) -> Optional[RawProviderActivity]:
    """Map a published post to a raw activity; drafts, empty shares and untitled posts give None."""
    if post.get("lifecycleState") != "PUBLISHED":
        return None
    content = _share_content(post)
    if not content:
        return None
    timestamp = parse_timestamp((post.get("created") or {}).get("time"))
    if timestamp is None:
        return None

    media_type = _media_type(content)
    commentary = (content.get("shareCommentary") or {}).get("text") or ""
    article = _ready_article(content) if media_type == "ARTICLE" else None
    article_url: Optional[str] = None
    if article is not None:
        title = (article.get("title") or {}).get("text") or commentary
        article_url = article.get("originalUrl") or None
    else:
        title = commentary
    if not title:
        return None

    urn = str(post.get("id"))
    return RawProviderActivity(
        provider_activity_id=urn,
        timestamp=timestamp,
        title=truncate(title, MAX_TITLE_LENGTH),
        description=commentary or None,
        url=article_url or post_url(urn),
        metadata={
            "has_article": media_type == "ARTICLE",
            "has_media": media_type is not None,
            "media_type": media_type,
            "article_url": article_url,
        },
    )


# PUBLIC_INTERFACE
def to_processed_activity(raw: RawProviderActivity) -> ProcessedActivity:
    """Video media or a title mentioning video is a tutorial; articles get a bonus."""
    if raw.metadata.get("media_type") == "VIDEO" or "video" in raw.title.lower():
        activity_type = "video_tutorial"
    else:
        activity_type = "blog_post"
    points = ACTIVITY_POINTS[activity_type]
    if raw.metadata.get("has_article"):
        points += ARTICLE_BONUS_POINTS
    return ProcessedActivity(
        provider=Provider.LINKEDIN,
        provider_activity_id=raw.provider_activity_id,
        activity_type=activity_type,
        title=raw.title,
        description=raw.description or None,
        url=raw.url or None,
        suggested_points=points,
        event_date=raw.timestamp,
    )


# PUBLIC_INTERFACE
def error_result(status: int, body: Any) -> FetchResult:
    """Classify a non-OK LinkedIn response. ``body`` is the decoded JSON or None."""
    if status == 401:
        return FetchResult.failure(FetchErrorKind.UNAUTHORIZED, "LinkedIn token is unauthorized or expired")
    if status == 429:
        return FetchResult.failure(FetchErrorKind.RATE_LIMITED, "LinkedIn API rate limit exceeded")
    if status == 403:
        return FetchResult.failure(FetchErrorKind.FORBIDDEN, "LinkedIn API access forbidden. Check app permissions.")
    message = body.get("message") if isinstance(body, dict) else None
    kind = FetchErrorKind.NOT_FOUND if status == 404 else FetchErrorKind.HTTP_ERROR
    return FetchResult.failure(kind, f"LinkedIn API error: {message or f'HTTP {status}'}")
