"""SQLAlchemy Core persistence for execution records."""

from .engine import create_db_engine, get_database_url
from .execution_log import ExecutionLog
from .schema import code_executions, create_schema, users

__all__ = [
    "ExecutionLog",
    "code_executions",
    "create_db_engine",
    "create_schema",
    "get_database_url",
    "users",
]
