"""Configuration management."""
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Application configuration."""

    # Database
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "mongodb://localhost:27017"))
    database_name: str = field(default_factory=lambda: os.getenv("DATABASE_NAME", "bookclub"))

    # Sessions
    secret_key: str = field(default_factory=lambda: os.getenv("SECRET_KEY", "dev-secret"))

    # Runtime
    app_env: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    cors_origins: List[str] = field(default_factory=lambda: _split_origins(os.getenv("CORS_ORIGINS", "*")))

    # GitHub OAuth
    github_client_id: str = field(default_factory=lambda: os.getenv("GITHUB_CLIENT_ID", ""))
    github_client_secret: str = field(default_factory=lambda: os.getenv("GITHUB_CLIENT_SECRET", ""))
    oauth_callback_url: str = field(
        default_factory=lambda: os.getenv("OAUTH_CALLBACK_URL", "http://localhost:8000/auth/github/callback")
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"
