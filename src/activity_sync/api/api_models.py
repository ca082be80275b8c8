from __future__ import annotations

from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from activity_sync.core.models import CamelModel

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Standardized success payload wrapper."""
    status: str = Field("ok", description="Success status, always 'ok'")
    data: T = Field(..., description="Response data")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional metadata associated with the response")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Human-readable description of the error")


class HealthData(BaseModel):
    message: str = Field(..., description="Health status message")
    env: str = Field(..., description="Environment name")


class DisconnectRequest(BaseModel):
    provider: Optional[str] = Field(default=None, description="Provider to disconnect (discord, linkedin, github, twitter)")


class DisconnectResponse(CamelModel):
    success: bool = Field(..., description="True when the connection was removed")
    message: str = Field(..., description="Informational message")
    token_revoked: bool = Field(..., description="True when the provider confirmed revocation")


class SyncHealthResponse(CamelModel):
    status: str = Field(..., description="'healthy' or 'unhealthy'")
    providers: Dict[str, int] = Field(default_factory=dict, description="Syncable connections per provider")
    total_connections: int = Field(0, description="Sum of syncable connections")
