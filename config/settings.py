"""Configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine defaults loaded from environment variables (SWR_ prefix)."""

    # Fetch / retry
    retries: int = 2
    retry_delay: float = 0.3          # seconds, doubled on each retry
    timeout: float = 0.0              # 0 = no timeout
    cancel_on_revalidate: bool = False

    # Cache
    ttl: float = 300.0                # 5 minutes, 0 = never expire
    max_entries: int = 100

    # Revalidation
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    focus_throttle: float = 5.0
    reconnect_throttle: float = 5.0
    revalidate_min_age: float = 1.0

    # Polling
    refresh_interval: float = 0.0     # 0 = no polling
    refresh_when_hidden: bool = False
    refresh_when_offline: bool = False
    deduping_interval: float = 2.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "SWR_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
