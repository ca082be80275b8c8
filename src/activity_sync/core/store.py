from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import PyMongoError

from activity_sync.core.db import CONNECTIONS_COLLECTION, PENDING_ACTIVITIES_COLLECTION
from activity_sync.core.errors import StoreError
from activity_sync.core.logging import get_logger
from activity_sync.core.models import SYNC_PROVIDERS, Connection, ProcessedActivity

logger = get_logger(__name__)

SYNC_PROVIDER_NAMES = [p.value for p in SYNC_PROVIDERS]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pending_activity_row(user_id: str, activity: ProcessedActivity) -> Dict[str, Any]:
    """Staging row for one activity; event_date is stored as YYYY-MM-DD."""
    return {
        "user_id": user_id,
        "provider": activity.provider.value,
        "provider_activity_id": activity.provider_activity_id,
        "activity_type": activity.activity_type,
        "title": activity.title,
        "description": activity.description,
        "url": activity.url,
        "event_date": activity.event_date.date().isoformat() if activity.event_date else None,
        "suggested_points": activity.suggested_points,
        "status": "pending",
    }


def split_new_activities(
    activities: List[ProcessedActivity], existing_ids: set
) -> List[ProcessedActivity]:
    """Drop activities whose provider id is already staged (or repeated in the batch)."""
    seen = set(existing_ids)
    fresh: List[ProcessedActivity] = []
    for activity in activities:
        if activity.provider_activity_id in seen:
            continue
        seen.add(activity.provider_activity_id)
        fresh.append(activity)
    return fresh


# PUBLIC_INTERFACE
class ConnectionStore(ABC):
    """Narrow read/write contract over stored connections and staged activities."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def list_syncable_connections(self) -> List[Connection]:
        """Connections for github/twitter/linkedin that hold an access token."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def list_expiring_connections(self, before: datetime) -> List[Connection]:
        """Connections of any provider holding a refresh token whose access token expires before `before`."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def count_syncable_connections_by_provider(self) -> Dict[str, int]:
        """Per-provider counts of syncable connections."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def find_connection(self, user_id: str, provider: str) -> Optional[Connection]:
        """Return the connection for (user, provider) if any."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def upsert_connection(
        self,
        user_id: str,
        provider: str,
        provider_user_id: str,
        provider_username: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Connection:
        """Update the (user, provider) connection or insert a new one. Tokens arrive encrypted."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def update_connection_tokens(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> None:
        """Overwrite the stored (encrypted) tokens and expiry of a connection."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def delete_connection(self, connection_id: str) -> None:
        """Remove a connection."""
        raise NotImplementedError

    # PUBLIC_INTERFACE
    @abstractmethod
    def insert_pending_activities(self, user_id: str, activities: List[ProcessedActivity]) -> Tuple[int, int]:
        """Stage activities as pending, skipping ids already staged for the user. Returns (inserted, skipped)."""
        raise NotImplementedError


def _doc_to_connection(doc: Dict[str, Any]) -> Connection:
    return Connection(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        provider=doc["provider"],
        provider_user_id=doc.get("provider_user_id") or "",
        provider_username=doc.get("provider_username"),
        access_token=doc.get("access_token"),
        refresh_token=doc.get("refresh_token"),
        token_expires_at=doc.get("token_expires_at"),
        updated_at=doc.get("updated_at"),
    )


class MongoConnectionStore(ConnectionStore):
    """ConnectionStore backed by the social_connections and pending_activities collections."""

    def __init__(self, db: Database):
        self.connections = db[CONNECTIONS_COLLECTION]
        self.pending = db[PENDING_ACTIVITIES_COLLECTION]

    def list_syncable_connections(self) -> List[Connection]:
        query = {"provider": {"$in": SYNC_PROVIDER_NAMES}, "access_token": {"$ne": None}}
        try:
            return [_doc_to_connection(doc) for doc in self.connections.find(query)]
        except PyMongoError as ex:
            raise StoreError(f"Failed to list connections: {ex}") from ex

    def list_expiring_connections(self, before: datetime) -> List[Connection]:
        query = {"refresh_token": {"$ne": None}, "token_expires_at": {"$ne": None, "$lt": before}}
        try:
            return [_doc_to_connection(doc) for doc in self.connections.find(query)]
        except PyMongoError as ex:
            raise StoreError(f"Failed to fetch connections: {ex}") from ex

    def count_syncable_connections_by_provider(self) -> Dict[str, int]:
        pipeline = [
            {"$match": {"provider": {"$in": SYNC_PROVIDER_NAMES}, "access_token": {"$ne": None}}},
            {"$group": {"_id": "$provider", "count": {"$sum": 1}}},
        ]
        counts = {name: 0 for name in SYNC_PROVIDER_NAMES}
        try:
            for row in self.connections.aggregate(pipeline):
                counts[row["_id"]] = int(row["count"])
        except PyMongoError as ex:
            raise StoreError(f"Database error: {ex}") from ex
        return counts

    def find_connection(self, user_id: str, provider: str) -> Optional[Connection]:
        try:
            doc = self.connections.find_one({"user_id": user_id, "provider": provider})
        except PyMongoError as ex:
            raise StoreError(f"Failed to load connection: {ex}") from ex
        return _doc_to_connection(doc) if doc else None

    def upsert_connection(
        self,
        user_id: str,
        provider: str,
        provider_user_id: str,
        provider_username: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Connection:
        now = _utcnow()
        fields = {
            "provider_user_id": provider_user_id,
            "provider_username": provider_username,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expires_at": token_expires_at,
            "updated_at": now,
        }
        try:
            self.connections.update_one(
                {"user_id": user_id, "provider": provider},
                {
                    "$set": fields,
                    "$setOnInsert": {"_id": str(uuid.uuid4()), "user_id": user_id, "provider": provider, "created_at": now},
                },
                upsert=True,
            )
            doc = self.connections.find_one({"user_id": user_id, "provider": provider})
        except PyMongoError as ex:
            raise StoreError(f"Failed to save connection: {ex}") from ex
        if doc is None:
            raise StoreError("Connection not found after upsert")
        return _doc_to_connection(doc)

    def update_connection_tokens(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> None:
        try:
            self.connections.update_one(
                {"_id": connection_id},
                {
                    "$set": {
                        "access_token": access_token,
                        "refresh_token": refresh_token,
                        "token_expires_at": token_expires_at,
                        "updated_at": _utcnow(),
                    }
                },
            )
        except PyMongoError as ex:
            raise StoreError(f"Failed to update tokens: {ex}") from ex

    def delete_connection(self, connection_id: str) -> None:
        try:
            self.connections.delete_one({"_id": connection_id})
        except PyMongoError as ex:
            raise StoreError(f"Failed to delete connection: {ex}") from ex

    def insert_pending_activities(self, user_id: str, activities: List[ProcessedActivity]) -> Tuple[int, int]:
        if not activities:
            return 0, 0
        ids = [a.provider_activity_id for a in activities]
        try:
            existing = {
                doc["provider_activity_id"]
                for doc in self.pending.find(
                    {
                        "user_id": user_id,
                        "provider": {"$in": sorted({a.provider.value for a in activities})},
                        "provider_activity_id": {"$in": ids},
                    },
                    {"provider_activity_id": 1},
                )
            }
            fresh = split_new_activities(activities, existing)
            if not fresh:
                return 0, len(activities)
            now = _utcnow()
            rows = [
                {"_id": str(uuid.uuid4()), "created_at": now, **pending_activity_row(user_id, a)}
                for a in fresh
            ]
            self.pending.insert_many(rows, ordered=False)
        except PyMongoError as ex:
            raise StoreError(f"Failed to insert pending activities: {ex}") from ex
        return len(fresh), len(activities) - len(fresh)
