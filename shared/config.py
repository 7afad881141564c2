"""Central configuration loaded from environment variables / .env file.

Every component inherits these base settings. The service extends them by
subclassing Settings and adding its own fields.

Usage:
    from shared.config import Settings
    settings = Settings()
    print(settings.data_dir)

To extend:
    from shared.config import Settings as BaseSettings

    class MySettings(BaseSettings):
        my_custom_var: str = "default"
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage ---
    data_dir: str = "data"  # JSON collections live here

    # --- General ---
    log_level: str = "INFO"
    log_format: str = "auto"  # auto | json | console
    timezone: str = "Asia/Kolkata"
