"""Configuration models and YAML loader for the jobstream client."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class BackendConfig(BaseModel):
    """Which remote store to talk to and how."""

    name: Literal["memory", "rest"] = "memory"
    url: str = ""
    api_key_env: str = "JOBSTREAM_API_KEY"
    timeout_s: float = Field(default=10.0, gt=0.0)
    poll_interval_s: float = Field(default=15.0, ge=1.0)
    seed_path: str | None = None

    @field_validator("url")
    @classmethod
    def url_stripped(cls, v: str) -> str:
        return v.strip().rstrip("/")

    def api_key(self) -> str | None:
        """Read the API key from the configured environment variable."""
        return os.environ.get(self.api_key_env) or None


class CacheConfig(BaseModel):
    """Job listing cache configuration."""

    ttl_seconds: float = Field(default=300.0, gt=0.0)


class NotificationConfig(BaseModel):
    """Notification ledger limits and new-job subscription gating."""

    cap: int = Field(default=50, ge=1, le=500)
    grace_seconds: float = Field(default=3.0, ge=0.0)


class StorageConfig(BaseModel):
    """Local key/value store configuration."""

    path: str = "data/local_store.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    user_id: str | None = None
    user_email: str = ""
    backend: BackendConfig = Field(default_factory=BackendConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("user_id")
    @classmethod
    def blank_user_is_anonymous(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
