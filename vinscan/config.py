"""Configuration for the vinscan service, loaded from the environment."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, overridable with VINSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VINSCAN_", env_file=".env", env_file_encoding="utf-8"
    )

    # Prefill cache
    database_uri: str = "sqlite:///./vin_prefill_cache.db"

    # Remote make/model prefill (vPIC)
    vpic_base_url: str = "https://vpic.nhtsa.dot.gov/api/vehicles"
    prefill_timeout_seconds: float = 4.0

    # Logging
    log_level: str = "INFO"


settings = Settings()
