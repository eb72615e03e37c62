"""
Runtime Configuration

Settings are read from environment variables (a local .env file is loaded
first when present). The server refuses to start without a signing secret
and a database URL; scripts and tests build their own Settings.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _split_origins(raw: str) -> List[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


@dataclass(frozen=True)
class Settings:
    # Mongo (DATABASE_URL preferred, MONGO_URI kept for older deployments)
    database_url: Optional[str] = field(
        default_factory=lambda: os.getenv("DATABASE_URL") or os.getenv("MONGO_URI")
    )
    database_name: str = field(default_factory=lambda: os.getenv("DATABASE_NAME") or "handyman")
    db_connect_timeout_ms: int = field(default_factory=lambda: _env_int("DB_CONNECT_TIMEOUT_MS", 30000))

    # Auth
    jwt_secret: Optional[str] = field(default_factory=lambda: os.getenv("JWT_SECRET"))
    token_expire_seconds: int = field(default_factory=lambda: _env_int("TOKEN_EXPIRE_SECONDS", 3600))

    # HTTP
    cors_allow_origins: List[str] = field(
        default_factory=lambda: _split_origins(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    port: int = field(default_factory=lambda: _env_int("PORT", 5000))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def check_required(self) -> None:
        missing = []
        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.database_url:
            missing.append("DATABASE_URL")
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
