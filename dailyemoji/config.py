import os
from typing import List


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """Runtime configuration read from the environment."""

    def __init__(self):
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./dailyemoji.db")
        # secret for signing player tokens; override in production
        self.SESSION_SECRET: str = os.getenv("SESSION_SECRET", "dev-secret-change-me")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LEADERBOARD_CACHE_SECONDS: int = _int_env("LEADERBOARD_CACHE_SECONDS", 30)
        self.RATE_LIMIT_PER_MINUTE: int = _int_env("RATE_LIMIT_PER_MINUTE", 30)
        self.CORS_ORIGINS: List[str] = [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8000",
            ).split(",")
            if o.strip()
        ]


settings = Settings()
