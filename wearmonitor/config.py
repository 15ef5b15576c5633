"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Variables are prefixed with ``WEARMONITOR_``, e.g. ``WEARMONITOR_LOG_LEVEL``.
    """

    # --- App ---
    app_name: str = "WearMonitor"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    # --- Telemetry sources ---
    source_mode: str = "simulated"  # only in-process simulated sources ship
    simulated_tick_seconds: float = 1.0  # 0 disables generated frames
    telemetry_config_path: str | None = None  # defaults to the bundled YAML

    model_config = SettingsConfigDict(
        env_prefix="WEARMONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
