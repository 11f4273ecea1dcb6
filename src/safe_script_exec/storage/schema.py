from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("session_id", String(255), nullable=False, unique=True),
    Column("language", String(16), nullable=False, default="en"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

code_executions = Table(
    "code_executions",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False, index=True),
    Column("language", String(32), nullable=False),
    Column("code", Text, nullable=False),
    Column("output", Text),
    Column("error", Text),
    Column("status", String(16), nullable=False),
    Column("duration_ms", Integer, nullable=False),
    Column("executed_at", DateTime(timezone=True), nullable=False, index=True),
    Column("metadata_json", Text),
)


def create_schema(engine: Engine) -> None:
    """Create the execution-log tables if they do not exist.

    Example:
        ```python
        create_schema(create_db_engine("sqlite:///:memory:"))
        ```
    """
    metadata.create_all(engine, checkfirst=True)
