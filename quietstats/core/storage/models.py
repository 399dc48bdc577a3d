from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC form; stored timestamps compare correctly as strings."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_iso(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class EventRecord(BaseModel):
    """
    An event ready for persistence: properties sanitized, metadata encrypted.
    """

    model_config = ConfigDict(extra="forbid")

    site_id: str = Field(min_length=1, max_length=200)
    type: str = Field(min_length=1, max_length=100)
    properties: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    # ciphertext tokens only
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    # erasure lookup keys: stored userId form and one-way session hash
    user_ref: Optional[str] = None
    session_ref: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _utc(cls, v: Any) -> datetime:
        if v is None or v == "":
            return utc_now()
        return parse_iso(v)


class StoredEvent(EventRecord):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "siteId": self.site_id,
            "type": self.type,
            "properties": json.dumps(self.properties, ensure_ascii=False, sort_keys=True),
            "timestamp": to_iso(self.timestamp),
            "ip": self.ip,
            "userAgent": self.user_agent,
            "sessionId": self.session_id,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }


class Site(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    site_id: str = Field(min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=200)
    domain: Optional[str] = Field(default=None, max_length=255)
    settings: Dict[str, Any] = Field(default_factory=dict)
    api_key: str = Field(min_length=1)  # ciphertext token
    retention_days: int = Field(default=30, ge=1, le=3650)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def public(self) -> Dict[str, Any]:
        """Wire view without the api key."""
        return {
            "siteId": self.site_id,
            "name": self.name,
            "domain": self.domain,
            "settings": dict(self.settings),
            "retentionDays": int(self.retention_days),
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }


class EventFilter(BaseModel):
    """
    Query / delete predicate. `start`/`end` are inclusive, `before` is strict.
    """

    model_config = ConfigDict(extra="forbid")

    site_id: str = Field(min_length=1)
    types: Optional[List[str]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    before: Optional[datetime] = None
    user_ref: Optional[str] = None
    session_ref: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
