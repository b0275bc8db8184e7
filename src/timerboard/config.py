"""Application settings loaded from environment variables / .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440
    discord_bot_token: str = ""
    discord_client_id: str = ""
    app_url: str = "http://localhost:8100"
    app_env: str = "development"
    app_port: int = 8100
    app_host: str = "0.0.0.0"
    scheduler_enabled: bool = True
    fleet_list_interval_seconds: int = 60
    guild_sync_interval_minutes: int = 30


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
