"""
LinkedIn UGC posts fetcher and mapping.
"""
import time

import httpx
import pytest

from activity_sync.connectors.linkedin import LinkedInActivityFetcher
from activity_sync.connectors.linkedin.mapping import map_linkedin_post
from activity_sync.core.models import FetchErrorKind, FetcherConfig

from conftest import json_response

UGC = "api.linkedin.com/v2/ugcPosts"
URN = "urn:li:person:abc"


def post(post_id="urn:li:share:1", text="Wrote about async Python", category="NONE", media=None,
         state="PUBLISHED", age_hours=1):
    content = {"shareCommentary": {"text": text}, "shareMediaCategory": category}
    if media is not None:
        content["media"] = media
    return {
        "id": post_id,
        "lifecycleState": state,
        "created": {"time": int((time.time() - age_hours * 3600) * 1000)},
        "specificContent": {"com.linkedin.ugc.ShareContent": content},
    }


def test_text_post_maps_to_blog_post():
    raw = map_linkedin_post(post())
    assert raw.title == "Wrote about async Python"
    assert raw.url == "https://www.linkedin.com/feed/update/urn:li:share:1"
    processed = LinkedInActivityFetcher().map_to_processed_activity(raw)
    assert processed.activity_type == "blog_post"
    assert processed.suggested_points == 100


def test_ready_article_uses_article_title_and_bonus():
    media = [{"status": "READY", "title": {"text": "Deep dive"}, "originalUrl": "https://blog.example.com/x"}]
    raw = map_linkedin_post(post(category="ARTICLE", media=media))
    assert raw.title == "Deep dive"
    assert raw.url == "https://blog.example.com/x"
    processed = LinkedInActivityFetcher().map_to_processed_activity(raw)
    assert processed.suggested_points == 125


def test_article_not_ready_falls_back_to_commentary():
    media = [{"status": "PROCESSING", "title": {"text": "Deep dive"}, "originalUrl": "https://blog.example.com/x"}]
    raw = map_linkedin_post(post(category="ARTICLE", media=media))
    assert raw.title == "Wrote about async Python"
    assert raw.url.startswith("https://www.linkedin.com/feed/update/")


def test_video_posts_are_tutorials():
    fetcher = LinkedInActivityFetcher()
    by_media = fetcher.map_to_processed_activity(map_linkedin_post(post(category="VIDEO")))
    assert by_media.activity_type == "video_tutorial"
    assert by_media.suggested_points == 150
    by_title = fetcher.map_to_processed_activity(map_linkedin_post(post(text="My new video on testing")))
    assert by_title.activity_type == "video_tutorial"


def test_drafts_and_empty_posts_are_skipped():
    assert map_linkedin_post(post(state="DRAFT")) is None
    assert map_linkedin_post(post(text="")) is None
    assert map_linkedin_post({"id": "x", "lifecycleState": "PUBLISHED", "created": {"time": 0}}) is None


def test_long_title_truncated_to_200():
    raw = map_linkedin_post(post(text="z" * 300))
    assert len(raw.title) == 200
    assert raw.description == "z" * 300


@pytest.mark.asyncio
async def test_fetch_pages_until_total(scripted):
    pages = iter([
        {"elements": [post("urn:li:share:1"), post("urn:li:share:2")], "paging": {"total": 3}},
        {"elements": [post("urn:li:share:3")], "paging": {"total": 3}},
    ])
    scripted.on("GET", UGC, lambda r: httpx.Response(200, json=next(pages)))
    fetcher = LinkedInActivityFetcher(transport=scripted.transport)
    result = await fetcher.fetch_activities("at", URN, FetcherConfig(max_results=2))
    assert result.success
    assert len(result.activities) == 2
    request = scripted.requests[0]
    assert request.url.params["authors"] == URN
    assert request.headers["X-Restli-Protocol-Version"] == "2.0.0"


@pytest.mark.asyncio
async def test_fetch_stops_at_lookback(scripted):
    scripted.on("GET", UGC, json_response({"elements": [post("urn:li:share:1"), post("urn:li:share:2", age_hours=30)]}))
    result = await LinkedInActivityFetcher(transport=scripted.transport).fetch_activities("at", URN, FetcherConfig())
    assert [a.provider_activity_id for a in result.activities] == ["urn:li:share:1"]
    assert len(scripted.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,kind,message",
    [
        (401, {}, FetchErrorKind.UNAUTHORIZED, "LinkedIn token is unauthorized or expired"),
        (429, {}, FetchErrorKind.RATE_LIMITED, "LinkedIn API rate limit exceeded"),
        (403, {}, FetchErrorKind.FORBIDDEN, "LinkedIn API access forbidden. Check app permissions."),
        (404, {"message": "Not here"}, FetchErrorKind.NOT_FOUND, "LinkedIn API error: Not here"),
        (500, {}, FetchErrorKind.HTTP_ERROR, "LinkedIn API error: HTTP 500"),
    ],
)
async def test_http_errors_are_classified(scripted, status, body, kind, message):
    scripted.on("GET", UGC, json_response(body, status=status))
    result = await LinkedInActivityFetcher(transport=scripted.transport).fetch_activities("at", URN, FetcherConfig())
    assert result.error_kind is kind
    assert result.error == message


def test_feed_identity_builds_person_urn():
    fetcher = LinkedInActivityFetcher()
    assert fetcher.feed_identity("abc123", "Dev") == "urn:li:person:abc123"
    assert fetcher.feed_identity(URN, None) == URN


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[post()], "unexpected", 42])
async def test_non_object_body_is_an_empty_feed(scripted, payload):
    scripted.on("GET", UGC, json_response(payload))
    result = await LinkedInActivityFetcher(transport=scripted.transport).fetch_activities("at", URN, FetcherConfig())
    assert result.success
    assert result.activities == []
