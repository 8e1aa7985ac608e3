"""
Carpool Trust Service - Configuration

All settings load from environment variables with safe defaults for development.
In production, set CARPOOL_ENV=production to enforce required values.
"""
import os
import secrets
import warnings
from typing import List
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("CARPOOL_ENV", "development")

        # === Database ===
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "carpool_dev_password")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

        # === Application ===
        self._secret_from_env = os.getenv("SECRET_KEY", "")
        if self._secret_from_env:
            self.SECRET_KEY = self._secret_from_env
        else:
            self.SECRET_KEY = secrets.token_hex(32)
            if self.ENVIRONMENT == "production":
                raise RuntimeError("SECRET_KEY must be set in production. Add it to .env")
            warnings.warn("SECRET_KEY not set, using random key. JWTs will not survive restarts.")

        self.ALLOWED_ORIGINS: List[str] = [
            o.strip()
            for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
            if o.strip()
        ]

        # === Admin ===
        self.ADMIN_EMAILS = [
            e.strip().lower()
            for e in os.getenv("ADMIN_EMAILS", "").split(",")
            if e.strip()
        ]

        # === Scoring ===
        self.CACHE_TTL_SCORE = int(os.getenv("CACHE_TTL_SCORE", "900"))            # 15 min
        self.CACHE_TTL_INCOMPLETE = int(os.getenv("CACHE_TTL_INCOMPLETE", "30"))   # retry soon
        self.FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "5"))
        self.SCORE_HISTORY_LIMIT = int(os.getenv("SCORE_HISTORY_LIMIT", "30"))

        # === Rate Limits ===
        self.RATE_LIMIT_CALCULATE = int(os.getenv("RATE_LIMIT_CALCULATE", "30"))   # per minute per IP

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
