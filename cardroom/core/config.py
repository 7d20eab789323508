from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Cardroom API"
    debug: bool = True
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    database_url: str = "sqlite:///./cardroom.db"
    redis_url: str = "redis://localhost:6379/0"

    deck_provider_mode: str = "local"
    deck_api_base_url: str = "https://deckofcardsapi.com/api/deck"
    deck_count: int = 6
    deck_http_timeout_seconds: float = 10.0
    deck_retry_attempts: int = 2

    default_betting_seconds: int = 30
    default_turn_seconds: int = 20
    default_starting_balance: int = 1000
    default_min_players: int = 1
    default_max_players: int = 6

    subscriber_queue_size: int = 256
    sse_keepalive_seconds: float = 15.0

    rate_limit_enabled: bool = True
    rate_limit_action_limit: int = 60
    rate_limit_action_window_seconds: int = 60
    websocket_event_limit: int = 120
    websocket_event_window_seconds: int = 60

    deadline_sweep_enabled: bool = False
    deadline_sweep_interval_seconds: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CARDROOM_",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
