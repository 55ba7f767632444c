"""Configuration management for the link shortener."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration."""

    # Database settings
    database_url: str = Field(
        default="sqlite:///./links.db",
        description="SQLAlchemy database URL"
    )

    # Root key bootstrap
    root_user_key: Optional[str] = Field(
        default=None,
        description="Secret used to create the Root User key on first startup"
    )

    # Public hostname of this service; redirects to it are rejected
    public_site_url: Optional[str] = Field(
        default=None,
        description="Hostname the shortener is served from (e.g. 'sho.rt')"
    )

    enable_docs: bool = Field(
        default=True,
        description="Serve the OpenAPI docs at /docs"
    )

    # Server settings
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind to"
    )

    port: int = Field(
        default=8000,
        description="Port to listen on"
    )

    workers: int = Field(
        default=1,
        ge=1,
        description="Number of uvicorn worker processes"
    )

    # Link lifecycle settings
    sweep_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between expiration sweeps"
    )

    stale_after_days: int = Field(
        default=90,
        ge=1,
        description="Links not visited for this many days are expired"
    )

    enable_sweeper: bool = Field(
        default=True,
        description="Run the background expiration sweeper"
    )

    token_max_attempts: int = Field(
        default=10,
        ge=1,
        description="Maximum attempts when generating a short token"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Log file path (logs to stdout if not specified)"
    )

    log_json: bool = Field(
        default=False,
        description="Use JSON format for logs"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_config() -> Config:
    """Load configuration from environment."""
    return Config()
