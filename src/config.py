"""Application settings loaded from environment variables."""

import os
from datetime import date
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Anniversary site configuration. All values come from environment variables."""

    # Backend: "supabase" (hosted) or "local" (libsql + directory storage)
    backend: str = Field(default="local")

    # Supabase
    supabase_url: str = Field(default="")
    supabase_key: str = Field(default="")

    # Object storage
    memories_bucket: str = Field(default="memories")
    bucket_size_limit: int = Field(default=10 * 1024 * 1024)
    upload_max_bytes: int = Field(default=5 * 1024 * 1024)

    # Image checks
    image_check_timeout: float = Field(default=5.0)

    # Slideshow
    slideshow_interval_ms: int = Field(default=5000)

    # Countdown
    anniversary_month: int = Field(default=5, ge=1, le=12)
    anniversary_day: int = Field(default=20, ge=1, le=31)

    # Local backend
    database_path: Path = Field(default=Path("data/anniversary.db"))
    storage_dir: Path = Field(default=Path("data/storage"))
    public_base_url: str = Field(default="http://localhost:8080")

    # Web server
    web_host: str = Field(default="0.0.0.0")
    web_port: int = Field(default=8080)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @model_validator(mode="after")
    def check_anniversary(self) -> "Settings":
        # 2000 is a leap year, so Feb 29 is accepted here
        try:
            date(2000, self.anniversary_month, self.anniversary_day)
        except ValueError:
            msg = (
                f"ANNIVERSARY_MONTH/ANNIVERSARY_DAY is not a calendar date: "
                f"{self.anniversary_month}/{self.anniversary_day}"
            )
            raise ValueError(msg) from None
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_anniversary(self) -> tuple[int, int]:
        """Return the recurring anniversary as ``(month, day)``."""
        return self.anniversary_month, self.anniversary_day

    def get_public_base_url(self) -> str:
        """PUBLIC_BASE_URL without a trailing slash."""
        return self.public_base_url.rstrip("/")


settings = Settings()
