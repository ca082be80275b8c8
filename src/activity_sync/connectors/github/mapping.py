from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from activity_sync.connectors.base import epoch_reset_to_iso, parse_timestamp, truncate
from activity_sync.core.models import (
    ACTIVITY_POINTS,
    FetchErrorKind,
    FetchResult,
    Provider,
    ProcessedActivity,
    RawProviderActivity,
)

MAX_TITLE_LENGTH = 100
MAX_COMMENT_LENGTH = 500


def extract_branch_name(ref: str) -> str:
    """refs/heads/main -> main; other refs are returned unchanged."""
    prefix = "refs/heads/"
    if ref.startswith(prefix):
        return ref[len(prefix):]
    return ref


def _map_push(event: Dict[str, Any], repo: str) -> List[RawProviderActivity]:
    payload = event.get("payload") or {}
    commits = payload.get("commits") or []
    if not commits:
        return []
    ref = payload.get("ref")
    branch = extract_branch_name(ref) if ref else "unknown"
    timestamp = parse_timestamp(event.get("created_at"))
    out: List[RawProviderActivity] = []
    for commit in commits:
        sha = commit.get("sha", "")
        message = commit.get("message") or ""
        out.append(
            RawProviderActivity(
                provider_activity_id=f"{event.get('id')}-{sha}",
                timestamp=timestamp,
                title=truncate(message.split("\n")[0], MAX_TITLE_LENGTH),
                description=f"Commit to {repo} on {branch}",
                url=f"https://github.com/{repo}/commit/{sha}",
                metadata={
                    "event_type": "PushEvent",
                    "repo": repo,
                    "branch": branch,
                    "sha": sha,
                    "full_message": message,
                },
            )
        )
    return out


# PUBLIC_INTERFACE
def map_github_event(event: Dict[str, Any]) -> Optional[List[RawProviderActivity]]:
    """Map one GitHub event to raw activities.

    Returns None for event types and actions that are not tracked, and an empty
    list for a push without commits.
    """
    event_type = event.get("type")
    repo = (event.get("repo") or {}).get("name", "")
    payload = event.get("payload") or {}
    action = payload.get("action")
    timestamp = parse_timestamp(event.get("created_at"))
    event_id = str(event.get("id"))
    if timestamp is None:
        return None

    if event_type == "PushEvent":
        return _map_push(event, repo)

    if event_type == "PullRequestEvent":
        pr = payload.get("pull_request")
        if action not in ("opened", "reopened") or not pr:
            return None
        return [
            RawProviderActivity(
                provider_activity_id=event_id,
                timestamp=timestamp,
                title=truncate(f"PR #{pr.get('number')}: {pr.get('title', '')}", MAX_TITLE_LENGTH),
                description=pr.get("body") or None,
                url=pr.get("html_url"),
                metadata={"event_type": event_type, "repo": repo, "pr_number": pr.get("number"), "action": action},
            )
        ]

    if event_type == "IssuesEvent":
        issue = payload.get("issue")
        if action != "opened" or not issue:
            return None
        return [
            RawProviderActivity(
                provider_activity_id=event_id,
                timestamp=timestamp,
                title=truncate(f"Issue #{issue.get('number')}: {issue.get('title', '')}", MAX_TITLE_LENGTH),
                description=issue.get("body") or None,
                url=issue.get("html_url"),
                metadata={"event_type": event_type, "repo": repo, "issue_number": issue.get("number"), "action": action},
            )
        ]

    if event_type == "IssueCommentEvent":
        issue = payload.get("issue")
        comment = payload.get("comment")
        if action != "created" or not issue or not comment:
            return None
        return [
            RawProviderActivity(
                provider_activity_id=event_id,
                timestamp=timestamp,
                title=truncate(f"Comment on #{issue.get('number')}: {issue.get('title', '')}", MAX_TITLE_LENGTH),
                description=truncate(comment.get("body") or "", MAX_COMMENT_LENGTH),
                url=comment.get("html_url"),
                metadata={"event_type": event_type, "repo": repo, "issue_number": issue.get("number")},
            )
        ]

    return None


# PUBLIC_INTERFACE
def to_processed_activity(raw: RawProviderActivity) -> ProcessedActivity:
    """Issue comments count as community answers; everything else is an OSS contribution."""
    if raw.metadata.get("event_type") == "IssueCommentEvent":
        activity_type = "community_answers"
    else:
        activity_type = "oss_contribution"
    return ProcessedActivity(
        provider=Provider.GITHUB,
        provider_activity_id=raw.provider_activity_id,
        activity_type=activity_type,
        title=raw.title,
        description=raw.description or None,
        url=raw.url or None,
        suggested_points=ACTIVITY_POINTS[activity_type],
        event_date=raw.timestamp,
    )


# PUBLIC_INTERFACE
def error_result(status: int, headers: Mapping[str, str], text: str) -> FetchResult:
    """Classify a non-OK GitHub response."""
    if status == 401:
        return FetchResult.failure(FetchErrorKind.UNAUTHORIZED, "GitHub token is unauthorized or expired")
    if status == 403:
        if headers.get("x-ratelimit-remaining") == "0":
            reset = epoch_reset_to_iso(headers.get("x-ratelimit-reset"))
            return FetchResult.failure(FetchErrorKind.RATE_LIMITED, f"GitHub API rate limit exceeded. Resets at {reset}")
        return FetchResult.failure(FetchErrorKind.FORBIDDEN, "GitHub API access forbidden")
    if status == 404:
        return FetchResult.failure(FetchErrorKind.NOT_FOUND, "GitHub user not found")
    return FetchResult.failure(FetchErrorKind.HTTP_ERROR, f"GitHub API error: HTTP {status} - {text}")
