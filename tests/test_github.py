"""
GitHub events fetcher and mapping.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from activity_sync.connectors.github import GitHubActivityFetcher
from activity_sync.connectors.github.mapping import extract_branch_name, map_github_event
from activity_sync.core.models import ACTIVITY_POINTS, FetchErrorKind, FetcherConfig

from conftest import json_response

EVENTS = "api.github.com/users/octocat/events"


def _iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) - delta).strftime("%Y-%m-%dT%H:%M:%SZ")


def push_event(event_id="1", age=timedelta(hours=1), commits=None, ref="refs/heads/main"):
    return {
        "id": event_id,
        "type": "PushEvent",
        "created_at": _iso(age),
        "repo": {"name": "octo/repo"},
        "payload": {
            "ref": ref,
            "commits": commits if commits is not None else [
                {"sha": "abc", "message": "Fix bug\n\nlong body"},
                {"sha": "def", "message": "Add feature"},
            ],
        },
    }


def test_extract_branch_name():
    assert extract_branch_name("refs/heads/feature/x") == "feature/x"
    assert extract_branch_name("refs/tags/v1") == "refs/tags/v1"


def test_push_event_yields_one_activity_per_commit():
    activities = map_github_event(push_event())
    assert [a.provider_activity_id for a in activities] == ["1-abc", "1-def"]
    first = activities[0]
    assert first.title == "Fix bug"
    assert first.description == "Commit to octo/repo on main"
    assert first.url == "https://github.com/octo/repo/commit/abc"


def test_push_without_ref_uses_unknown_branch():
    event = push_event()
    del event["payload"]["ref"]
    assert map_github_event(event)[0].description == "Commit to octo/repo on unknown"


def test_long_titles_are_truncated():
    event = push_event(commits=[{"sha": "a", "message": "x" * 150}])
    title = map_github_event(event)[0].title
    assert len(title) == 100 and title.endswith("...")


def test_pull_request_issue_and_comment_filters():
    base = {"id": "9", "created_at": _iso(timedelta(hours=1)), "repo": {"name": "octo/repo"}}
    pr = {**base, "type": "PullRequestEvent", "payload": {"action": "opened", "pull_request": {"number": 3, "title": "T", "html_url": "u"}}}
    assert map_github_event(pr)[0].title == "PR #3: T"
    closed = {**pr, "payload": {**pr["payload"], "action": "closed"}}
    assert map_github_event(closed) is None

    issue = {**base, "type": "IssuesEvent", "payload": {"action": "opened", "issue": {"number": 4, "title": "Bug"}}}
    assert map_github_event(issue)[0].title == "Issue #4: Bug"

    comment = {
        **base,
        "type": "IssueCommentEvent",
        "payload": {"action": "created", "issue": {"number": 5, "title": "Q"}, "comment": {"body": "y" * 600, "html_url": "c"}},
    }
    mapped = map_github_event(comment)[0]
    assert mapped.title == "Comment on #5: Q"
    assert len(mapped.description) == 500

    assert map_github_event({**base, "type": "WatchEvent", "payload": {}}) is None


def test_classification_and_points():
    fetcher = GitHubActivityFetcher()
    commit = fetcher.map_to_processed_activity(map_github_event(push_event())[0])
    assert commit.activity_type == "oss_contribution"
    assert commit.suggested_points == 50
    base = {"id": "9", "created_at": _iso(timedelta(hours=1)), "repo": {"name": "r"}}
    comment = {
        **base,
        "type": "IssueCommentEvent",
        "payload": {"action": "created", "issue": {"number": 1, "title": "Q"}, "comment": {"body": "A"}},
    }
    answer = fetcher.map_to_processed_activity(map_github_event(comment)[0])
    assert answer.activity_type == "community_answers"
    assert answer.suggested_points == 25


def test_points_follow_the_shared_table(monkeypatch):
    monkeypatch.setitem(ACTIVITY_POINTS, "oss_contribution", 70)
    commit = GitHubActivityFetcher().map_to_processed_activity(map_github_event(push_event())[0])
    assert commit.suggested_points == 70


@pytest.mark.asyncio
async def test_fetch_filters_lookback_and_caps_results(scripted):
    events = [push_event("1"), push_event("2", age=timedelta(hours=30))]
    scripted.on("GET", EVENTS, json_response(events))
    fetcher = GitHubActivityFetcher(transport=scripted.transport)
    result = await fetcher.fetch_activities("gho", "octocat", FetcherConfig(max_results=1, lookback_hours=24))
    assert result.success
    assert [a.provider_activity_id for a in result.activities] == ["1-abc"]
    assert scripted.requests[0].headers["Authorization"] == "Bearer gho"


def test_feed_identity_prefers_username():
    fetcher = GitHubActivityFetcher()
    assert fetcher.feed_identity("123", "octocat") == "octocat"
    assert fetcher.feed_identity("123", None) == "123"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,headers,kind,message",
    [
        (401, {}, FetchErrorKind.UNAUTHORIZED, "GitHub token is unauthorized or expired"),
        (403, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "0"}, FetchErrorKind.RATE_LIMITED,
         "GitHub API rate limit exceeded. Resets at 1970-01-01T00:00:00.000Z"),
        (403, {"x-ratelimit-remaining": "10"}, FetchErrorKind.FORBIDDEN, "GitHub API access forbidden"),
        (404, {}, FetchErrorKind.NOT_FOUND, "GitHub user not found"),
        (502, {}, FetchErrorKind.HTTP_ERROR, "GitHub API error: HTTP 502 - bad gateway"),
    ],
)
async def test_http_errors_are_classified(scripted, status, headers, kind, message):
    scripted.on("GET", EVENTS, lambda r: httpx.Response(status, text="bad gateway", headers=headers))
    result = await GitHubActivityFetcher(transport=scripted.transport).fetch_activities("gho", "octocat", FetcherConfig())
    assert not result.success
    assert result.error_kind is kind
    assert result.error == message


@pytest.mark.asyncio
async def test_network_error_becomes_failure():
    def boom(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    fetcher = GitHubActivityFetcher(transport=httpx.MockTransport(boom))
    result = await fetcher.fetch_activities("gho", "octocat", FetcherConfig())
    assert not result.success
    assert result.error_kind is FetchErrorKind.NETWORK_ERROR
