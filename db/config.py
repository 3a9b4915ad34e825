"""
db/config.py

Database settings for the uploads store.

The URL is taken from the first configured source: DATABASE_URL, then
CLOUD_DATABASE_URL when ENVIRONMENT is cloud-like, then LOCAL_DATABASE_URL.
Postgres URLs are rewritten to the psycopg driver; SQLite URLs are used as
given, which is what tests and single-machine runs rely on.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILENAMES = (".env", ".env.local")
CLOUD_ENVIRONMENTS = frozenset({"prod", "production", "staging", "cloud"})
SUPPORTED_URL_PREFIXES = ("postgresql", "sqlite")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_files(root: Path | None = None) -> None:
    """
    Load KEY=VALUE pairs from `.env` and `.env.local` under ``root``.

    Variables already present in the process environment are kept.
    """

    base = root or PROJECT_ROOT
    for filename in ENV_FILENAMES:
        env_path = base / filename
        if not env_path.is_file():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if key and key not in os.environ:
                os.environ[key] = value.strip().strip('"').strip("'")


def normalize_database_url(url: str) -> str:
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def is_supported_database_url(url: str) -> bool:
    return url.startswith(SUPPORTED_URL_PREFIXES)


def resolve_database_url(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ

    direct_url = env.get("DATABASE_URL")
    if direct_url:
        return normalize_database_url(direct_url)

    environment = env.get("ENVIRONMENT", "local").strip().lower()
    cloud_url = env.get("CLOUD_DATABASE_URL")
    if environment in CLOUD_ENVIRONMENTS and cloud_url:
        return normalize_database_url(cloud_url)

    local_url = env.get("LOCAL_DATABASE_URL")
    if local_url:
        return normalize_database_url(local_url)

    raise RuntimeError(
        "No database URL configured for the uploads store. Set DATABASE_URL, "
        "or LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except ValueError:
        return default


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 1800

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DatabaseSettings:
        env = os.environ if environ is None else environ
        return cls(
            url=resolve_database_url(env),
            echo=env.get("SQL_ECHO", "").strip().lower() in _TRUE_VALUES,
            pool_size=_int_setting(env, "DB_POOL_SIZE", 5),
            max_overflow=_int_setting(env, "DB_MAX_OVERFLOW", 10),
            pool_recycle=_int_setting(env, "DB_POOL_RECYCLE", 1800),
        )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    load_env_files()
    return DatabaseSettings.from_env()
