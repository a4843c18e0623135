"""
Configuration settings for the GeoTrace backend.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "GeoTrace API"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3001

    # CORS
    cors_origins: list[str] = ["*"]

    # Traceroute
    traceroute_dialect: Literal["auto", "unix", "windows"] = "auto"
    traceroute_command: Optional[str] = None  # None: dialect default (traceroute / tracert)
    traceroute_args: list[str] = []
    trace_timeout: float = 120.0  # seconds for the whole subprocess run
    include_timeout_hops: bool = False  # emit "* * *" hops as placeholders

    # Geolocation
    geo_api_url: str = "http://ip-api.com/json/{ip}"
    geo_timeout: float = 5.0
    geo_memoize: bool = True  # share one lookup per IP within a session

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


# Global settings instance
settings = Settings()
