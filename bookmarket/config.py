"""
API configuration settings.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import validator
from pydantic_settings import BaseSettings


class MarketplaceConfig(BaseSettings):
    """Marketplace configuration, read from the environment and `.env`."""

    # API Settings
    api_title: str = "BookMarket API"
    api_version: str = "1.0.0"
    api_description: str = "REST backend for an online book marketplace"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Database Settings
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "booksDB"

    # Identity provider: base64-encoded service account JSON
    fb_service_key: str = ""

    # Payment provider
    stripe_secret_key: str = ""
    currency: str = "usd"

    # Frontend origin, used for CORS and checkout redirects
    client_domain: str = "http://localhost:5173"

    # Catalog
    latest_books_limit: int = 6
    default_page_size: int = 10
    max_page_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @validator("log_level")
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @validator("log_format")
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    @validator("client_domain")
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def cors_origins(self) -> List[str]:
        return [self.client_domain]


# Global config instance
config = MarketplaceConfig()
