"""Worker settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Blocking-pop timeout used when the configured delay is not positive.
DEFAULT_QUEUE_DELAY = 10


class Settings(BaseSettings):
    """krumnet worker configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Record store
    database_url: str = "sqlite+aiosqlite:///krumnet.db"
    krumnet_db_busy_timeout: int = 15  # seconds a connection waits on a locked database

    # Job store
    redis_url: str = "redis://127.0.0.1:6379/0"
    krumnet_queue_key: str = "krumnet:jobs:queue"
    krumnet_map_key: str = "krumnet:jobs:map"
    krumnet_dequeue_key: str = "krumnet:jobs:dequeued"
    krumnet_queue_delay: int = DEFAULT_QUEUE_DELAY  # seconds a worker waits on an empty queue

    # Worker
    krumnet_max_consecutive_failures: int = 10

    # Games
    krumnet_rounds_per_game: int = 3

    # Environment
    krumnet_env: str = "development"

    # Logging
    krumnet_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _normalize_queue_delay(self) -> Settings:
        """A zero delay would make BLPOP block forever; fall back to the default."""
        if self.krumnet_queue_delay <= 0:
            self.krumnet_queue_delay = DEFAULT_QUEUE_DELAY
        return self

    @model_validator(mode="after")
    def _check_rounds_per_game(self) -> Settings:
        if self.krumnet_rounds_per_game < 1:
            msg = "KRUMNET_ROUNDS_PER_GAME must be at least 1"
            raise ValueError(msg)
        return self
