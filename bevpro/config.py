from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SEED_PATH = Path(__file__).resolve().parent / "data" / "drinks.json"


class Settings(BaseSettings):
    """Runtime configuration for the venue terminal.

    Every tunable lives here so call sites never repeat literals such as the
    tax rate or the default bottle size. Variables are read with the
    ``BEVPRO_`` prefix unless a field names its own variable; a value that does
    not parse raises instead of falling back to the default.
    """

    model_config = SettingsConfigDict(
        env_prefix="BEVPRO_",
        env_file=".env",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    tax_rate: float = Field(0.08, ge=0)
    venue_id: int = Field(1, validation_alias="VENUE_ID")
    venue_name: str = Field("Knotting Hill Place", validation_alias="VENUE_NAME")

    # ── Audio / session ───────────────────────────────────────
    target_sample_rate: int = Field(24000, gt=0, validation_alias="BEVPRO_SAMPLE_RATE")
    capture_block_samples: int = Field(4096, gt=0, validation_alias="BEVPRO_CAPTURE_BLOCK")
    reconnect_delay_seconds: float = Field(3.0, ge=0, validation_alias="BEVPRO_RECONNECT_DELAY")
    max_reconnect_attempts: int = Field(0, ge=0, validation_alias="BEVPRO_MAX_RECONNECTS")
    playback_lead_seconds: float = Field(0.25, ge=0, validation_alias="BEVPRO_PLAYBACK_LEAD")

    # ── Inventory ─────────────────────────────────────────────
    default_container_oz: float = Field(25.36, gt=0, validation_alias="BEVPRO_CONTAINER_OZ")
    low_stock_threshold: float = Field(10, validation_alias="BEVPRO_LOW_STOCK")
    low_stock_warning: float = 5
    allow_negative_stock: bool = True
    decrement_max_attempts: int = Field(3, ge=1, validation_alias="BEVPRO_DECREMENT_ATTEMPTS")

    seed_path: Optional[str] = str(DEFAULT_SEED_PATH)

    # ── Provider ──────────────────────────────────────────────
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    realtime_model: str = Field("gpt-4o-realtime-preview-2024-12-17", validation_alias="OPENAI_REALTIME_MODEL")
    realtime_voice: str = Field("alloy", validation_alias="OPENAI_REALTIME_VOICE")

    # ── Logging ───────────────────────────────────────────────
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(False, validation_alias="LOG_JSON")

    @field_validator("seed_path", mode="before")
    @classmethod
    def _blank_seed_path(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def with_overrides(self, **changes: Any) -> "Settings":
        return self.model_copy(update=changes)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = ["Settings", "get_settings", "DEFAULT_SEED_PATH"]
