"""Runtime settings loaded from environment variables."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

NonEmptyStr = Annotated[str, Field(min_length=1)]
PositiveInt = Annotated[int, Field(gt=0)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]


class Settings(BaseSettings):
    """Environment-driven token lifecycle settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: NonEmptyStr = Field(validation_alias="DATABASE_URL")
    access_token_secret: NonEmptyStr = Field(validation_alias="ACCESS_TOKEN_SECRET")
    refresh_token_secret: NonEmptyStr = Field(
        validation_alias=AliasChoices("REFRESH_TOKEN_SECRET", "ACCESS_TOKEN_SECRET"),
    )
    jwt_algorithm: Literal["HS256", "HS384", "HS512"] = Field(
        default="HS256",
        validation_alias="JWT_ALGORITHM",
    )
    jwt_issuer: NonEmptyStr = Field(default="token-lifecycle", validation_alias="JWT_ISSUER")
    jwt_audience: NonEmptyStr = Field(
        default="token-lifecycle-users",
        validation_alias="JWT_AUDIENCE",
    )
    access_token_ttl_seconds: PositiveInt = Field(
        default=900,
        validation_alias="ACCESS_TOKEN_TTL_SECONDS",
    )
    refresh_token_ttl_days: PositiveInt = Field(
        default=7,
        validation_alias="REFRESH_TOKEN_TTL_DAYS",
    )
    refresh_token_max_usage: PositiveInt = Field(
        default=1,
        validation_alias="REFRESH_TOKEN_MAX_USAGE",
    )
    max_concurrent_sessions: PositiveInt = Field(
        default=5,
        validation_alias="MAX_CONCURRENT_SESSIONS",
    )
    security_window_hours: PositiveInt = Field(
        default=24,
        validation_alias="SECURITY_WINDOW_HOURS",
    )
    cleanup_interval_seconds: NonNegativeFloat = Field(
        default=3600.0,
        validation_alias="CLEANUP_INTERVAL_SECONDS",
    )
    revoked_retention_days: PositiveInt = Field(
        default=30,
        validation_alias="REVOKED_RETENTION_DAYS",
    )
    cleanup_batch_size: PositiveInt = Field(
        default=500,
        validation_alias="CLEANUP_BATCH_SIZE",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings."""

    return Settings()  # type: ignore[call-arg]
