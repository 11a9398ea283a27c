from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide defaults, read from SMARTFETCH_* env vars and .env."""

    model_config = SettingsConfigDict(
        env_prefix="SMARTFETCH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Client defaults
    base_url: str | None = None
    timeout: float = 30.0
    debug: bool = False
    mock_mode: bool = False
    offline_queue_enabled: bool = True

    # Storage backends
    cache_max_size: int = 500
    cache_dir: str = ".smartfetch/cache"
    database_url: str = "sqlite+aiosqlite:///./smartfetch.db"
