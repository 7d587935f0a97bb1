from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    database_url: str = Field(default="sqlite:///./taskcycle.db")
    log_level: str = Field(default="INFO")

    # Timezone used when a preview request does not name one
    default_timezone: str = Field(default="UTC")
    # Horizon (days) for virtual occurrences in the upcoming view
    upcoming_max_days: int = Field(default=7, ge=1)
    # Horizon (days) for materialized instances
    instance_horizon_days: int = Field(default=14, ge=1)

    cors_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
