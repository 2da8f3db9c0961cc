"""Configuration models for tablewatch."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# pg_notify rejects payloads of 8000 bytes or more; leave room for the header.
MAX_FRAGMENT_SIZE = 7950


class ObserverSettings(BaseSettings):
    """Runtime settings for one TableObserver."""

    model_config = SettingsConfigDict(env_prefix="TABLEWATCH_", extra="ignore")

    database_url: str | None = Field(default=None, description="PostgreSQL URL for DDL and LISTEN.")
    function_prefix: str = Field(default="tblobs", min_length=1)
    fragment_size: int = Field(default=MAX_FRAGMENT_SIZE, ge=1, le=MAX_FRAGMENT_SIZE)
    max_pending_messages: int = Field(default=1000, ge=1)
    max_message_pages: int = Field(default=1024, ge=1, description="Largest page count accepted per message.")
    pending_ttl_seconds: float = Field(default=60.0, gt=0)
    reconnect_interval: float | None = Field(default=None, gt=0)

    @field_validator("function_prefix")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be non-empty")
        return normalized


class DebounceOptions(BaseModel):
    """Options for TableObserver.subscribe_debounced()."""

    delay: float = Field(default=0.2, ge=0, description="Debounce window in seconds.")
    reduce: bool = Field(default=True)
    fire_first: bool = Field(default=True)
    fire_unreduced: bool = Field(
        default=False,
        description="With reduce=False, also fire for matching events outside the window rules.",
    )
