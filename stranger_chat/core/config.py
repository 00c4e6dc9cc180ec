"""Runtime configuration for the relay server and terminal client."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, overridable through STRANGER_CHAT_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="STRANGER_CHAT_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8765)
    log_level: str = Field(default="INFO")

    max_frame_bytes: int = Field(default=16384)
    transport_max_size: int = Field(default=1 << 20)
    trust_forwarded_for: bool = Field(default=False)

    name_min_length: int = Field(default=3)
    name_max_length: int = Field(default=20)
    message_max_length: int = Field(default=2000)

    message_rate_limit: int = Field(default=30)
    connection_rate_limit: int = Field(default=10)
    rate_window_seconds: float = Field(default=60.0)
    reap_interval: float = Field(default=300.0)

    login_pairing_delay: float = Field(default=0.5)
    skip_pairing_delay: float = Field(default=1.0)
    pairing_sweep_interval: float = Field(default=5.0)
    stale_sweep_interval: float = Field(default=30.0)
    online_broadcast_interval: float = Field(default=10.0)

    server_uri: str = Field(default="ws://localhost:8765")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
