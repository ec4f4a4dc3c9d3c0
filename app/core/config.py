"""
Configuration settings for the application
"""

import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./guestlist.db")
    DB_CONNECT_TIMEOUT: int = 10  # seconds
    DB_STATEMENT_TIMEOUT_MS: int = 15000
    DB_POOL_SIZE: int = 20

    # Read cache
    CACHE_TTL_SECONDS: float = 30
    STATS_CACHE_TTL_SECONDS: float = 10
    CACHE_SWEEP_INTERVAL_SECONDS: float = 60

    # Check-in rules
    UNDO_WINDOW_SECONDS: int = 30
    MAX_BULK_SIZE: int = 50

    # Security
    ADMIN_ROLE: str = "Admin"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]

    # File limits
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    class Config:
        env_file = ".env"

settings = Settings()
