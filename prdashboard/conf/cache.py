from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Snapshot cache location
    cache_dir: Path = Field(
        default=Path.home() / ".cache" / "prdashboard",
        description="Directory holding the last successful PR snapshot",
    )
    cache_max_age: int = Field(
        default=3600,  # 1 hour
        description="Age in seconds after which a cached snapshot is no longer used for cold start",
    )

    # User configuration file (refresh interval, repository filter, toggles)
    config_file: Path = Field(
        default=Path.home() / ".config" / "prdashboard" / "config.json",
        description="JSON file holding the user configuration",
    )

    @property
    def snapshot_file(self) -> Path:
        return self.cache_dir / "pr_cache.json"
