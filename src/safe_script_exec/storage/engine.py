from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

DEFAULT_DB_PATH = Path("~/.safe_script_exec/executions.db")


def get_database_url() -> str:
    """Resolve the SQLAlchemy database URL from `DATABASE_URL` or the default path.

    Example:
        ```python
        url = get_database_url()
        ```
    """
    env_url = os.environ.get("DATABASE_URL")
    if env_url:
        return env_url
    path = DEFAULT_DB_PATH.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def create_db_engine(url: str | None = None) -> Engine:
    """Create an Engine for the execution log.

    In-memory SQLite shares one connection so every thread sees the same tables.

    Example:
        ```python
        engine = create_db_engine("sqlite:///:memory:")
        ```
    """
    resolved = url or get_database_url()
    if resolved in {"sqlite://", "sqlite:///:memory:"}:
        return create_engine(
            resolved,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if resolved.startswith("sqlite"):
        return create_engine(resolved, connect_args={"check_same_thread": False})
    return create_engine(resolved, pool_pre_ping=True)
