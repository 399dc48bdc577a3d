from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    created_at: str = "1970-01-01T00:00:00Z"
    backups: Dict[str, Any] = Field(default_factory=lambda: {"max_backups_per_file": 10})


class PipelineConfigFile(BaseModel):
    """
    config/pipeline.json: privacy behavior of the ingestion pipeline.

    The encryption key itself is never stored here; it is read from
    QUIETSTATS_ENCRYPTION_KEY at startup.
    """

    model_config = ConfigDict(extra="forbid")
    schema_version: int = Field(default=1, ge=1, le=10)
    consent_required: bool = True
    hash_user_ids: bool = True
    retention_days: int = Field(default=30, ge=1, le=3650)
    hash_salt: str = Field(default="", max_length=128)
    allow_ephemeral_key: bool = False
    max_payload_bytes: int = Field(default=100 * 1024, ge=1024, le=10 * 1024 * 1024)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: int = Field(default=1, ge=1, le=10)
    enabled: bool = True
    bind_host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "https://localhost:3000"])
    max_request_bytes: int = Field(default=100 * 1024, ge=1024)
    rate_limits: Dict[str, int] = Field(default_factory=lambda: {"per_ip_per_minute": 100})
    docs_enabled: bool = True

    @field_validator("allowed_origins")
    @classmethod
    def _no_wildcard(cls, v: List[str]) -> List[str]:
        if any(str(o).strip() == "*" for o in v):
            raise ValueError("wildcard origins are not allowed")
        return [str(o).strip() for o in v if str(o).strip()]


class RetentionConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: int = Field(default=1, ge=1, le=10)
    enabled: bool = True
    interval_seconds: float = Field(default=24 * 60 * 60, ge=1.0)
    run_on_start: bool = True


class StorageConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    schema_version: int = Field(default=1, ge=1, le=10)
    db_path: str = "runtime/events.sqlite"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    app: AppFileConfig
    pipeline: PipelineConfigFile
    web: WebConfig
    retention: RetentionConfigFile
    storage: StorageConfigFile
