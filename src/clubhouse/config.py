# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv

ENV_PREFIX = "CLUBHOUSE_"

# Default SQLite file anchored to the project root, not to the current working directory.
BASE_DIR = Path(__file__).resolve().parents[2]
DEFAULT_DATABASE_URL = f"sqlite:///{BASE_DIR / 'data' / 'clubhouse.db'}"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


def database_url_from_env() -> str:
    """Full URL if given, else one assembled from host/user/password/name, else SQLite."""
    url = _env("DATABASE_URL")
    if url:
        return url
    host = _env("DB_HOST")
    if not host:
        return DEFAULT_DATABASE_URL
    driver = _env("DB_DRIVER", "postgresql+psycopg")
    user = quote_plus(_env("DB_USER", "") or "")
    password = quote_plus(_env("DB_PASSWORD", "") or "")
    name = _env("DB_NAME", "clubhouse")
    creds = f"{user}:{password}@" if user else ""
    return f"{driver}://{creds}{host}/{name}"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Build with ``Settings.from_env()`` in production."""

    secret_key: str
    session_store_secret: str
    database_url: str = DEFAULT_DATABASE_URL
    session_ttl_seconds: int = 60 * 60  # 1 hour
    cookie_name: str = "clubhouse_session"
    cookie_secure: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        secret = _env("SECRET_KEY")
        if not secret:
            raise RuntimeError("Missing CLUBHOUSE_SECRET_KEY in environment")
        store_secret = _env("SESSION_STORE_SECRET")
        if not store_secret:
            raise RuntimeError("Missing CLUBHOUSE_SESSION_STORE_SECRET in environment")
        if store_secret == secret:
            raise RuntimeError("CLUBHOUSE_SESSION_STORE_SECRET must differ from CLUBHOUSE_SECRET_KEY")
        return cls(
            secret_key=secret,
            session_store_secret=store_secret,
            database_url=database_url_from_env(),
            session_ttl_seconds=int(_env("SESSION_TTL", "3600")),
            cookie_name=_env("COOKIE_NAME", "clubhouse_session"),
            cookie_secure=_env_bool("COOKIE_SECURE", False),
            host=_env("HOST", "0.0.0.0"),
            port=int(_env("PORT", "3000")),
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    def cookie_settings(self) -> dict:
        return {"httponly": True, "samesite": "lax", "secure": self.cookie_secure}
