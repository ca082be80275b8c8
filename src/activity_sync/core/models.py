from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Provider(str, Enum):
    """OAuth providers recognised by the service."""

    GITHUB = "github"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    DISCORD = "discord"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Provider"]:
        """Return the matching provider or None for unknown/empty values."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# Providers whose activity feeds are pulled by the sync run. Discord is auth-only.
SYNC_PROVIDERS = (Provider.GITHUB, Provider.TWITTER, Provider.LINKEDIN)


ActivityType = Literal["blog_post", "oss_contribution", "community_answers", "video_tutorial"]

# Base points per activity type. Mappings start here; Twitter scales by engagement, LinkedIn adds an article bonus.
ACTIVITY_POINTS: Dict[str, int] = {
    "blog_post": 100,
    "oss_contribution": 50,
    "community_answers": 25,
    "video_tutorial": 150,
}


class CamelModel(BaseModel):
    """Base for models whose JSON form uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Connection(BaseModel):
    id: str = Field(..., description="Connection id")
    user_id: str = Field(..., description="Owning application user id")
    provider: str = Field(..., description="Provider name as stored")
    provider_user_id: str = Field(..., description="Provider-side account id")
    provider_username: Optional[str] = Field(default=None, description="Provider-side handle if known")
    access_token: Optional[str] = Field(default=None, description="Encrypted access token")
    refresh_token: Optional[str] = Field(default=None, description="Encrypted refresh token")
    token_expires_at: Optional[datetime] = Field(default=None, description="Access token expiry; None means it does not expire")
    updated_at: Optional[datetime] = Field(default=None, description="Last time the record was written")


class TokenPair(CamelModel):
    """Decrypted credentials held in memory for one sync cycle."""

    access_token: str = Field(..., description="Plaintext access token")
    refresh_token: Optional[str] = Field(default=None, description="Plaintext refresh token")
    expires_at: Optional[datetime] = Field(default=None, description="Access token expiry")


class RefreshResult(BaseModel):
    success: bool = Field(..., description="True when usable tokens are available")
    tokens: Optional[TokenPair] = Field(default=None, description="Current or refreshed tokens")
    error: Optional[str] = Field(default=None, description="Why refresh failed")


class RawProviderActivity(BaseModel):
    provider_activity_id: str = Field(..., description="Provider-scoped id, unique per provider")
    timestamp: datetime = Field(..., description="When the activity happened")
    title: str = Field(..., description="Display title")
    description: Optional[str] = Field(default=None, description="Optional body")
    url: Optional[str] = Field(default=None, description="Link to the activity")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Provider-specific classification hints")


class ProcessedActivity(CamelModel):
    provider: Provider = Field(..., description="Provider the activity came from")
    provider_activity_id: str = Field(..., description="Dedup key against staged activities")
    activity_type: ActivityType = Field(..., description="Activity category")
    title: str = Field(..., description="Display title")
    description: Optional[str] = Field(default=None, description="Optional body")
    url: Optional[str] = Field(default=None, description="Link to the activity")
    suggested_points: int = Field(..., description="Suggested, non-authoritative point value")
    event_date: Optional[datetime] = Field(default=None, description="When the activity happened")


class FetcherConfig(BaseModel):
    max_results: int = Field(default=50, ge=1, description="Stop once this many activities are mapped")
    lookback_hours: int = Field(default=24, ge=1, description="Only activities newer than this are returned")


class FetchErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"


class FetchResult(BaseModel):
    success: bool = Field(..., description="False when the provider call failed")
    activities: List[RawProviderActivity] = Field(default_factory=list, description="Activities inside the lookback window")
    error: Optional[str] = Field(default=None, description="Human readable failure")
    error_kind: Optional[FetchErrorKind] = Field(default=None, description="Failure category")

    @classmethod
    def failure(cls, kind: FetchErrorKind, error: str) -> "FetchResult":
        return cls(success=False, activities=[], error=error, error_kind=kind)


class SyncResult(CamelModel):
    connection_id: str = Field(..., description="Connection id")
    user_id: str = Field(..., description="Owning user id")
    provider: str = Field(..., description="Provider as stored on the connection")
    success: bool = Field(..., description="True when the fetch completed")
    activities: List[ProcessedActivity] = Field(default_factory=list, description="Mapped activities")
    error: Optional[str] = Field(default=None, description="Failure reason")
    token_refreshed: bool = Field(default=False, description="True when a refresh produced a new access token")
    new_tokens: Optional[TokenPair] = Field(default=None, description="Tokens to persist when token_refreshed is set")


class OAuthStatePayload(CamelModel):
    """Signed content of the OAuth `state` parameter."""

    user_id: str = Field(..., description="User who started the flow")
    redirect_url: str = Field(..., description="Relative path to return to after the callback")
    provider: Provider = Field(..., description="Provider the flow was started for")
    csrf: str = Field(..., description="Nonce mirrored in the oauth_state cookie")
    exp: int = Field(..., description="Expiry in epoch milliseconds")
    code_verifier: Optional[str] = Field(default=None, description="PKCE verifier fallback")


class CallbackResult(BaseModel):
    success: bool = Field(..., description="True when the connection was stored")
    redirect_url: str = Field(..., description="Where to send the browser")
    error: Optional[str] = Field(default=None, description="Display message for failures")
    error_code: Optional[str] = Field(default=None, description="Stable failure code")


class RevokeResult(BaseModel):
    success: bool = Field(..., description="True when the provider no longer honours the token")
    error: Optional[str] = Field(default=None, description="Failure reason")


class SyncSummary(CamelModel):
    total: int = Field(0, description="Connections processed")
    successful: int = Field(0, description="Connections synced without error")
    failed: int = Field(0, description="Connections that failed")
    activities_found: int = Field(0, description="Activities returned by providers")
    activities_inserted: int = Field(0, description="New pending activities staged")
    activities_skipped: int = Field(0, description="Activities already staged or not stored")
    tokens_refreshed: int = Field(0, description="Connections whose tokens were refreshed")
