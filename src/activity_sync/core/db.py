from __future__ import annotations

from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from activity_sync.core.settings import Settings, get_settings
from activity_sync.core.logging import get_logger

logger = get_logger(__name__)

_client: MongoClient | None = None

CONNECTIONS_COLLECTION = "social_connections"
PENDING_ACTIVITIES_COLLECTION = "pending_activities"


# PUBLIC_INTERFACE
def get_mongo_client(settings: Optional[Settings] = None) -> MongoClient:
    """Return a singleton MongoClient using settings from environment variables."""
    global _client
    if _client is None:
        settings = settings or get_settings()
        logger.info("Connecting to MongoDB...")
        _client = MongoClient(settings.mongo.MONGODB_URL, tz_aware=True)
    return _client


# PUBLIC_INTERFACE
def get_db(settings: Optional[Settings] = None) -> Database:
    """Get the configured MongoDB database handle."""
    settings = settings or get_settings()
    return get_mongo_client(settings)[settings.mongo.MONGODB_DB]


# PUBLIC_INTERFACE
def ensure_indexes(db: Database) -> None:
    """Create the uniqueness constraints the store relies on."""
    db[CONNECTIONS_COLLECTION].create_index(
        [("user_id", ASCENDING), ("provider", ASCENDING)], unique=True, name="uniq_user_provider"
    )
    db[PENDING_ACTIVITIES_COLLECTION].create_index(
        [("user_id", ASCENDING), ("provider", ASCENDING), ("provider_activity_id", ASCENDING)],
        unique=True,
        name="uniq_user_provider_activity",
    )
