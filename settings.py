from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from the environment / .env.

    DATABASE_URL is optional: without it the app runs on in-memory stores,
    which is what local demos and the test-suite use.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: Optional[str] = Field(None, description="MongoDB connection URL")
    database_name: str = Field("training", description="MongoDB database name")
    port: int = Field(8000, description="HTTP port used by `python main.py`")
    log_level: str = Field("INFO", description="Root logging level")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    answer_write_retries: int = Field(3, ge=0, description="Retries for a failed answer save")
    answer_write_backoff_seconds: float = Field(0.5, ge=0)
    timer_interval_seconds: float = Field(1.0, gt=0, description="Seconds per countdown tick")


@lru_cache()
def get_settings() -> Settings:
    """Return the cached Settings instance."""
    return Settings()
