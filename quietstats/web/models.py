from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SiteCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_id: str = Field(alias="siteId", min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=200)
    domain: Optional[str] = Field(default=None, max_length=255)
    settings: Dict[str, Any] = Field(default_factory=dict)
    retention_days: Optional[int] = Field(default=None, alias="retentionDays", ge=1, le=3650)


class SiteUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    domain: Optional[str] = Field(default=None, max_length=255)
    settings: Optional[Dict[str, Any]] = None
    retention_days: Optional[int] = Field(default=None, alias="retentionDays", ge=1, le=3650)


class EventIn(BaseModel):
    """
    Inbound event. Property contents are checked by the pipeline validator,
    not here, so the error codes match the client's.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Any = None
    properties: Any = Field(default_factory=dict)
    timestamp: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=200)
    # page URL sent by the tracker; not stored
    url: Optional[str] = Field(default=None, max_length=2048)


class SiteResponse(BaseModel):
    success: bool = True
    site: Dict[str, Any]
    api_key: Optional[str] = Field(default=None, serialization_alias="apiKey")


class EventResponse(BaseModel):
    success: bool = True
    event: Dict[str, Any]


class ErasureResponse(BaseModel):
    success: bool = True
    deleted: int
