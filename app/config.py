"""Application configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the Strava weather service."""
    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    encryption_key: str | None = None

    strava_client_id: str | None = None
    strava_client_secret: str | None = None
    strava_webhook_verify_token: str | None = None
    strava_api_base_url: str = "https://www.strava.com/api/v3"
    strava_oauth_base_url: str = "https://www.strava.com/oauth"

    openweathermap_api_key: str | None = None
    openweathermap_base_url: str = "https://api.openweathermap.org/data/3.0/onecall"

    app_url: str = "http://localhost:8000"

    api_key: str | None = None
    api_key_redis_url: str | None = None
    api_key_redis_set: str = "api_keys"

    weather_cache_redis_url: str | None = None
    weather_cache_ttl_seconds: int = 1800
    user_database_url: str | None = None

    http_timeout_seconds: float = 10.0
    webhook_deadline_seconds: float = 8.0
    log_level: str = "INFO"

    @field_validator(
        "strava_api_base_url",
        "strava_oauth_base_url",
        "openweathermap_base_url",
        "app_url",
        mode="after",
    )
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @property
    def webhook_callback_url(self) -> str:
        """Public URL Strava should deliver webhook events to."""
        return f"{self.app_url}/v1/strava/webhook"


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4, exclude={'encryption_key', 'strava_client_secret'})}")
