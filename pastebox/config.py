"""
Configuration module for Pastebox.
Loads environment variables and provides config objects.
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    DEBUG: bool = _flag("DEBUG", "True")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    TEST_MODE: bool = _flag("TEST_MODE", "0")

    # Origin used in returned paste URLs; falls back to the request origin
    PUBLIC_URL: str = os.getenv("PUBLIC_URL", "")
    REDIRECT_URL: str = os.getenv("REDIRECT_URL", "https://github.com/yi-ge/p.est.im")

    EXPIRATION_TTL: int = int(os.getenv("EXPIRATION_TTL", str(24 * 60 * 60)))
    MAX_SIZE: int = int(os.getenv("MAX_SIZE", str(1 * 1024 * 1024)))
    ID_LENGTH: int = int(os.getenv("ID_LENGTH", "6"))
    CACHE_ENABLED: bool = _flag("CACHE_ENABLED", "True")


settings = Settings()
