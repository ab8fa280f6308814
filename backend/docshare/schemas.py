from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime

from .utils import MAX_IP_LENGTH

MAX_EXTRA_KEYS = 16


class CamelModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CreateLinkRequest(CamelModel):
    """Request schema for issuing a share link."""

    # Optional here so a missing id yields the service's 400, not a schema error
    document_id: Optional[str] = Field(None, max_length=36, description="Document to share")
    expires_at: Optional[datetime] = Field(None, description="Absolute expiry (optional)")
    max_views: Optional[int] = Field(None, ge=1, description="View cap (optional)")


class ShareLinkResponse(CamelModel):
    """Response schema for an issued link, as seen by its owner."""

    link_id: str
    document_id: str
    expires_at: Optional[datetime]
    created_by: Optional[str]
    created_at: Optional[datetime]
    max_views: Optional[int] = None


class LinkAccessResponse(CamelModel):
    """Response schema for anonymous link access."""

    document_id: str
    link_id: str
    expires_at: Optional[datetime]
    created_at: Optional[datetime]


class GeoLocation(CamelModel):
    country: Optional[str] = Field(None, max_length=64)
    region: Optional[str] = Field(None, max_length=128)
    city: Optional[str] = Field(None, max_length=128)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class LogViewRequest(CamelModel):
    """Request schema for recording a view."""

    ip_address: Optional[str] = Field(None, max_length=MAX_IP_LENGTH)
    user_agent: Optional[str] = Field(None, max_length=1024)
    location: Optional[GeoLocation] = None
    viewer_email: Optional[str] = Field(None, max_length=320)
    session_duration: Optional[int] = Field(None, ge=0, description="Seconds")
    extra: dict[str, str] = Field(default_factory=dict)

    @field_validator('extra')
    @classmethod
    def limit_extra(cls, v):
        if len(v) > MAX_EXTRA_KEYS:
            raise ValueError(f'extra accepts at most {MAX_EXTRA_KEYS} keys')
        return v


class LogViewResponse(CamelModel):
    logged: bool = True
    timestamp: datetime


class LinkStatsResponse(CamelModel):
    """Response schema for link statistics."""

    link_id: str
    document_id: str
    view_count: int
    last_opened: Optional[datetime]
    expires_at: Optional[datetime]
    created_at: Optional[datetime]
    unique_viewers: int
    devices: dict[str, int] = Field(default_factory=dict)


class DocumentStatsResponse(CamelModel):
    """Response schema for per-document roll-up."""

    document_id: str
    total_shares: int
    total_views: int
    last_viewed: Optional[datetime]


class ShareLinkListResponse(CamelModel):
    links: List[ShareLinkResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: bool
    redis: bool
    version: str
