"""Configuration using pydantic-settings."""

import os
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings

DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"  # noqa: S105


class Settings(BaseSettings):
    """Application settings with validation and constants."""

    host: str = "0.0.0.0"  # nosec B104 - Required for container deployment
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None

    environment: Literal["development", "docker", "lambda"] = "development"

    database_url: str = "sqlite+aiosqlite:///./data/movies.db"

    aws_region: str = "us-east-1"
    dynamodb_table: str = "movie-reviews"

    # Rate limits (slowapi syntax)
    rate_limit: str = "100/15minutes"
    auth_rate_limit: str = "5/15minutes"
    review_rate_limit: str = "10/hour"

    # JWT settings
    secret_key: str = DEFAULT_SECRET_KEY
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60 * 24 * 7

    # bcrypt cost factor
    password_hash_rounds: int = 12

    cors_origins: list[str] = ["*"]

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    @property
    def is_lambda_environment(self) -> bool:
        """Check if running in AWS Lambda."""
        return self.environment == "lambda" or bool(os.getenv("AWS_LAMBDA_FUNCTION_NAME"))

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL based on environment."""
        if self.is_lambda_environment:
            return f"dynamodb://{self.dynamodb_table}?region={self.aws_region}"
        return self.database_url

    @model_validator(mode="after")
    def validate_environment(self) -> "Settings":
        """Set environment based on MOVIES_ENV or AWS Lambda detection."""
        env = os.getenv("MOVIES_ENV", "").lower()
        if env in ("lambda", "docker", "development"):
            self.environment = env  # type: ignore[assignment]
        elif os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
            self.environment = "lambda"
        return self

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Require a strong JWT secret outside local development."""
        if self.environment == "development":
            return self
        if self.secret_key == DEFAULT_SECRET_KEY:
            raise ValueError(
                "MOVIES_SECRET_KEY must be set to a private value "
                f"in the '{self.environment}' environment."
            )
        if len(self.secret_key) < 32:
            raise ValueError(
                "MOVIES_SECRET_KEY must be at least 32 characters long "
                f"in the '{self.environment}' environment."
            )
        return self

    class Config:
        """Pydantic config."""

        env_prefix = "MOVIES_"
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings
