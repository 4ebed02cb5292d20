"""
Runtime settings.

Values come from TUCACHE_* environment variables; the CLI may override them.

    TUCACHE_BASE_URL          portal base url
    TUCACHE_DATABASE_URL      SQLAlchemy async url (sqlite+aiosqlite:///..., postgresql+asyncpg://...)
    TUCACHE_MAX_CONCURRENCY   global cap on in-flight portal requests
    TUCACHE_TIMEOUT           HTTP timeout in seconds
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from tucache.url import BASE_URL


def _default_database_url() -> str:
    base = Path.home() / ".tucache"
    return f"sqlite+aiosqlite:///{base / 'cache.db'}"


@dataclass(frozen=True)
class Settings:
    base_url: str = BASE_URL
    database_url: str = ""
    max_concurrent_requests: int = 10
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            base_url=env.get("TUCACHE_BASE_URL", BASE_URL),
            database_url=env.get("TUCACHE_DATABASE_URL") or _default_database_url(),
            max_concurrent_requests=int(env.get("TUCACHE_MAX_CONCURRENCY", "10")),
            request_timeout=float(env.get("TUCACHE_TIMEOUT", "30")),
        )
