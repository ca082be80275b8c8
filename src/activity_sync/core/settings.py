from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field
from dotenv import load_dotenv

from activity_sync.core.errors import ConfigurationError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import Provider

# Load .env if present
load_dotenv()

logger = get_logger(__name__)

TOKEN_KEY_BYTES = 32


class SecuritySettings(BaseModel):
    """Secrets used for token encryption, OAuth state signing and the sync trigger."""

    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(default=None, description="Base64 key that decodes to exactly 32 bytes (AES-256-GCM)")
    OAUTH_STATE_SECRET: Optional[str] = Field(default=None, description="HMAC secret for signing OAuth state tokens")
    SYNC_API_KEY: Optional[str] = Field(default=None, description="Bearer key required by the scheduled sync endpoint")


class MongoSettings(BaseModel):
    """MongoDB connection settings."""

    MONGODB_URL: str = Field(default="mongodb://localhost:27017", description="Mongo connection string")
    MONGODB_DB: str = Field(default="activity_sync", description="Database name to use")


class ProviderCredentials(BaseModel):
    client_id: str = Field(..., description="OAuth client id")
    client_secret: str = Field(..., description="OAuth client secret")


class OAuthSettings(BaseModel):
    """OAuth client ids and secrets for supported providers.

    Unset values leave the provider unconfigured; connect requests for it answer 500.
    """

    DISCORD_CLIENT_ID: Optional[str] = Field(default=None, description="Discord OAuth client id")
    DISCORD_CLIENT_SECRET: Optional[str] = Field(default=None, description="Discord OAuth client secret")
    LINKEDIN_CLIENT_ID: Optional[str] = Field(default=None, description="LinkedIn OAuth client id")
    LINKEDIN_CLIENT_SECRET: Optional[str] = Field(default=None, description="LinkedIn OAuth client secret")
    GITHUB_CLIENT_ID: Optional[str] = Field(default=None, description="GitHub OAuth app client id")
    GITHUB_CLIENT_SECRET: Optional[str] = Field(default=None, description="GitHub OAuth app client secret")
    TWITTER_CLIENT_ID: Optional[str] = Field(default=None, description="Twitter/X OAuth 2.0 client id")
    TWITTER_CLIENT_SECRET: Optional[str] = Field(default=None, description="Twitter/X OAuth 2.0 client secret")

    # PUBLIC_INTERFACE
    def credentials(self, provider: Provider) -> Optional[ProviderCredentials]:
        """Return client credentials for a provider, or None when either half is missing."""
        prefix = Provider(provider).value.upper()
        client_id = getattr(self, f"{prefix}_CLIENT_ID")
        client_secret = getattr(self, f"{prefix}_CLIENT_SECRET")
        if not client_id or not client_secret:
            return None
        return ProviderCredentials(client_id=client_id, client_secret=client_secret)

    def is_configured(self, provider: Provider) -> bool:
        return self.credentials(provider) is not None


class SyncSettings(BaseModel):
    """Activity sync tuning."""

    HTTP_TIMEOUT_SECONDS: float = Field(default=20.0, description="Per-call timeout for every outbound provider request")
    SYNC_MAX_RESULTS: int = Field(default=50, ge=1, description="Maximum activities mapped per connection per run")
    SYNC_LOOKBACK_HOURS: int = Field(default=24, ge=1, description="Only activities newer than this window are fetched")
    TOKEN_REFRESH_WINDOW_HOURS: int = Field(
        default=24, ge=1, description="The refresh job renews tokens expiring within this many hours"
    )


class APISettings(BaseModel):
    """FastAPI application settings."""

    API_TITLE: str = Field(default="Activity Sync Service", description="API title for OpenAPI")
    API_DESCRIPTION: str = Field(
        default="OAuth connections and automatic activity sync for GitHub, Twitter/X and LinkedIn.",
        description="API description",
    )
    API_VERSION: str = Field(default="0.1.0", description="API version")
    APP_URL: Optional[str] = Field(default=None, description="Public origin used for OAuth callback URLs and redirects")
    USER_HEADER_NAME: str = Field(default="X-User-Id", description="Header set by the upstream auth layer with the caller's user id")
    CORS_ALLOW_ORIGINS: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed methods")
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"], description="CORS allowed headers")


class RuntimeSettings(BaseModel):
    ENV: str = Field(default="development", description="Environment name; 'production' enables strict mode")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_FORMAT: str = Field(default="json", description="json or plain")


class ValidationResult(BaseModel):
    valid: bool = Field(..., description="True when no errors were found")
    errors: List[str] = Field(default_factory=list, description="Problems that make the service unusable")
    warnings: List[str] = Field(default_factory=list, description="Problems that degrade the service")


def _decoded_key_length(raw: str) -> Optional[int]:
    try:
        return len(base64.b64decode(raw, validate=True))
    except (binascii.Error, ValueError):
        return None


class Settings(BaseModel):
    """Application configuration bundle."""

    security: SecuritySettings = Field(default_factory=SecuritySettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    api: APISettings = Field(default_factory=APISettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)

    @property
    def is_production(self) -> bool:
        return self.runtime.ENV.lower() == "production"

    @staticmethod
    def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
        return os.getenv(name, default)

    # PUBLIC_INTERFACE
    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        env = cls._get_env
        security = SecuritySettings(
            TOKEN_ENCRYPTION_KEY=env("TOKEN_ENCRYPTION_KEY") or None,
            OAUTH_STATE_SECRET=env("OAUTH_STATE_SECRET") or None,
            SYNC_API_KEY=env("SYNC_API_KEY") or None,
        )
        mongo = MongoSettings(
            MONGODB_URL=env("MONGODB_URL", "mongodb://localhost:27017") or "mongodb://localhost:27017",
            MONGODB_DB=env("MONGODB_DB", "activity_sync") or "activity_sync",
        )
        oauth = OAuthSettings(
            **{
                f"{p.value.upper()}_{suffix}": env(f"{p.value.upper()}_{suffix}") or None
                for p in Provider
                for suffix in ("CLIENT_ID", "CLIENT_SECRET")
            }
        )
        sync = SyncSettings(
            HTTP_TIMEOUT_SECONDS=float(env("HTTP_TIMEOUT_SECONDS", "20") or "20"),
            SYNC_MAX_RESULTS=int(env("SYNC_MAX_RESULTS", "50") or "50"),
            SYNC_LOOKBACK_HOURS=int(env("SYNC_LOOKBACK_HOURS", "24") or "24"),
            TOKEN_REFRESH_WINDOW_HOURS=int(env("TOKEN_REFRESH_WINDOW_HOURS", "24") or "24"),
        )
        api = APISettings(
            API_TITLE=env("API_TITLE", "Activity Sync Service"),
            API_VERSION=env("API_VERSION", "0.1.0"),
            APP_URL=env("APP_URL") or None,
            USER_HEADER_NAME=env("USER_HEADER_NAME", "X-User-Id"),
            CORS_ALLOW_ORIGINS=(env("CORS_ALLOW_ORIGINS", "*") or "*").split(","),
            CORS_ALLOW_METHODS=(env("CORS_ALLOW_METHODS", "*") or "*").split(","),
            CORS_ALLOW_HEADERS=(env("CORS_ALLOW_HEADERS", "*") or "*").split(","),
        )
        runtime = RuntimeSettings(
            ENV=env("ENV", "development") or "development",
            LOG_LEVEL=env("LOG_LEVEL", "INFO") or "INFO",
            LOG_FORMAT=env("LOG_FORMAT", "json") or "json",
        )
        return cls(security=security, mongo=mongo, oauth=oauth, sync=sync, api=api, runtime=runtime)

    # PUBLIC_INTERFACE
    def validate_config(self) -> ValidationResult:
        """Check secrets and provider credentials; production turns missing secrets into errors."""
        errors: List[str] = []
        warnings: List[str] = []
        prod = self.is_production

        key = self.security.TOKEN_ENCRYPTION_KEY
        if not key:
            if prod:
                errors.append("TOKEN_ENCRYPTION_KEY is required in production")
            else:
                warnings.append("TOKEN_ENCRYPTION_KEY not set - tokens will be stored unencrypted (dev only)")
        else:
            length = _decoded_key_length(key)
            if length is None:
                errors.append("TOKEN_ENCRYPTION_KEY must be a valid base64 string")
            elif length != TOKEN_KEY_BYTES:
                errors.append("TOKEN_ENCRYPTION_KEY must be exactly 32 bytes when base64-decoded")

        if not self.security.OAUTH_STATE_SECRET:
            if prod:
                errors.append("OAUTH_STATE_SECRET is required in production")
            else:
                warnings.append("OAUTH_STATE_SECRET not set - OAuth flows will fail")

        if not self.security.SYNC_API_KEY:
            warnings.append("SYNC_API_KEY not set - the sync endpoint will reject every request")

        if not self.api.APP_URL and prod:
            errors.append("APP_URL is required in production for OAuth callbacks")

        missing = [p.value for p in Provider if not self.oauth.is_configured(p)]
        if missing:
            warnings.append(f"OAuth not configured for: {', '.join(missing)}")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # PUBLIC_INTERFACE
    def assert_valid(self) -> ValidationResult:
        """Log warnings; raise ConfigurationError on errors in production, log them otherwise."""
        result = self.validate_config()
        for warning in result.warnings:
            logger.warning("config_warning", extra={"detail": warning})
        if not result.valid:
            if self.is_production:
                raise ConfigurationError("Environment validation failed: " + "; ".join(result.errors))
            for error in result.errors:
                logger.error("config_error", extra={"detail": error})
        return result


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to application settings loaded from environment."""
    return Settings.from_env()
