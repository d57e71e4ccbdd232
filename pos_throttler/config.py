from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "POS Throttler"
    rate_limit_enabled: bool = True
    # Default policy; validated by ThrottlePolicy when the app is built.
    rate_limit_ttl: int = 60
    rate_limit_max: int = 100
    rate_limit_store: Literal["memory", "redis"] = "memory"
    rate_limit_fail_open: bool = True
    redis_url: str = Field(default="redis://localhost:6379/0", pattern=r"^rediss?://")
    redis_key_prefix: str = "throttle:"
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = False
    store_cleanup_interval_seconds: int = Field(default=300, ge=1)


settings = Settings()
