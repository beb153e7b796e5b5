"""
Database URL resolution for the app, the scheduler service and Alembic.

PostgreSQL is the deployment target; SQLite is accepted for local runs and
tests.
"""

from __future__ import annotations

import os
from pathlib import Path

SUPPORTED_PREFIXES = ("postgresql", "sqlite")


def load_env_files() -> None:
    """
    Read KEY=VALUE lines from `.env` then `.env.local` at the project root.

    Variables already present in the process environment win.
    """

    project_root = Path(__file__).resolve().parents[1]
    for filename in (".env", ".env.local"):
        env_path = project_root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            if line.startswith("export "):
                line = line[len("export "):]

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def normalize_database_url(url: str) -> str:
    """Rewrite bare postgres schemes to the psycopg driver."""
    url = url.strip()
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return "postgresql+psycopg://" + url[len(scheme):]
    return url


def ensure_supported(url: str, *, source: str) -> str:
    if not url.startswith(SUPPORTED_PREFIXES):
        raise RuntimeError(f"{source} uses an unsupported backend. Supported: PostgreSQL, SQLite.")
    return url


def resolve_database_url() -> str:
    """
    Return the listings database URL from DATABASE_URL, else LOCAL_DATABASE_URL.
    """

    load_env_files()

    for name in ("DATABASE_URL", "LOCAL_DATABASE_URL"):
        raw = os.getenv(name, "").strip()
        if raw:
            return ensure_supported(normalize_database_url(raw), source=name)

    raise RuntimeError(
        "No database URL configured for the listings store. Set DATABASE_URL or LOCAL_DATABASE_URL."
    )
