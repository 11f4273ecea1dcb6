from __future__ import annotations

import json
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from ..logger import get_logger
from ..policy import ExecutionResult
from .schema import code_executions, create_schema, users

logger = get_logger(__name__)

DEFAULT_SESSION_ID = "default-session"
DEFAULT_USER_LANGUAGE = "en"


def _from_json(value: Any) -> dict[str, Any]:
    """Decode a stored metadata blob, tolerating empty or malformed values.

    Example:
        ```python
        meta = _from_json('{"captured_at": "2024-01-01T00:00:00+00:00"}')
        ```
    """
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ExecutionLog:
    """Persist one record per execution without ever failing the caller.

    Writes go through a single background worker so the caller gets its result
    before the row is committed. Any persistence error is logged and dropped.

    Example:
        ```python
        log = ExecutionLog(create_db_engine("sqlite:///:memory:"))
        log.submit(result)
        log.close()
        ```
    """

    def __init__(
        self,
        engine: Engine,
        *,
        default_session_id: str = DEFAULT_SESSION_ID,
        ensure_schema: bool = True,
    ) -> None:
        """Bind the log to an engine and create the tables when asked.

        Example:
            ```python
            log = ExecutionLog(engine, default_session_id="cli")
            ```
        """
        self._engine = engine
        self._default_session_id = default_session_id
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._closed = False
        if ensure_schema:
            create_schema(engine)

    def __enter__(self) -> "ExecutionLog":
        """Return self for use in a `with` block.

        Example:
            ```python
            with ExecutionLog(engine) as log:
                log.submit(result)
            ```
        """
        return self

    def __exit__(self, *exc_info: Any) -> None:
        """Drain pending writes on block exit.

        Example:
            ```python
            log.__exit__(None, None, None)
            ```
        """
        self.close()

    def _find_user(self, conn: Connection, session_id: str) -> str | None:
        """Return the user id for `session_id`, or None when no user exists.

        Example:
            ```python
            user_id = log._find_user(conn, "default-session")
            ```
        """
        row = conn.execute(
            select(users.c.id).where(users.c.session_id == session_id)
        ).first()
        return None if row is None else str(row.id)

    def _ensure_user(self, session_id: str) -> str:
        """Return the user id for `session_id`, creating the user if missing.

        A concurrent writer may create the same session between the lookup and
        the insert; the unique constraint on `session_id` then rejects ours and
        the row that won is returned instead.

        Example:
            ```python
            user_id = log._ensure_user("default-session")
            ```
        """
        try:
            with self._engine.begin() as conn:
                user_id = self._find_user(conn, session_id)
                if user_id is not None:
                    return user_id
                user_id = uuid.uuid4().hex
                conn.execute(
                    users.insert().values(
                        id=user_id,
                        session_id=session_id,
                        language=DEFAULT_USER_LANGUAGE,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                return user_id
        except IntegrityError:
            with self._engine.connect() as conn:
                user_id = self._find_user(conn, session_id)
            if user_id is None:
                raise
            return user_id

    def record(
        self,
        result: ExecutionResult,
        *,
        session_id: str | None = None,
        language: str = "python",
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Write one execution record synchronously; return its id or None on failure.

        Example:
            ```python
            record_id = log.record(result, session_id="abc", metadata={"tool": "python_execution"})
            ```
        """
        executed_at = datetime.now(timezone.utc)
        payload_meta = {"captured_at": executed_at.isoformat()}
        payload_meta.update(metadata or {})
        try:
            user_id = self._ensure_user(session_id or self._default_session_id)
            with self._engine.begin() as conn:
                record_id = uuid.uuid4().hex
                conn.execute(
                    code_executions.insert().values(
                        id=record_id,
                        user_id=user_id,
                        language=language,
                        code=result.code,
                        output=result.output,
                        error=result.error,
                        status=result.status.value,
                        duration_ms=int(result.duration_ms),
                        executed_at=executed_at,
                        metadata_json=json.dumps(payload_meta, default=str),
                    )
                )
        except Exception:
            logger.exception("Failed to log code execution")
            return None
        return record_id

    def submit(
        self,
        result: ExecutionResult,
        *,
        session_id: str | None = None,
        language: str = "python",
        metadata: dict[str, Any] | None = None,
    ) -> Future[str | None]:
        """Schedule `record` on the background writer.

        After `close`, the record is written inline and a completed future is returned.

        Example:
            ```python
            future = log.submit(result)
            future.result(timeout=5)
            ```
        """
        with self._lock:
            if not self._closed:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=1, thread_name_prefix="sse-execution-log"
                    )
                return self._executor.submit(
                    self.record,
                    result,
                    session_id=session_id,
                    language=language,
                    metadata=metadata,
                )
        done: Future[str | None] = Future()
        done.set_result(
            self.record(result, session_id=session_id, language=language, metadata=metadata)
        )
        return done

    def recent(self, limit: int = 20, session_id: str | None = None) -> list[dict[str, Any]]:
        """Return the newest execution records first.

        Example:
            ```python
            rows = log.recent(limit=10)
            ```
        """
        stmt = (
            select(
                code_executions.c.id,
                users.c.session_id,
                code_executions.c.language,
                code_executions.c.code,
                code_executions.c.output,
                code_executions.c.error,
                code_executions.c.status,
                code_executions.c.duration_ms,
                code_executions.c.executed_at,
                code_executions.c.metadata_json,
            )
            .join(users, users.c.id == code_executions.c.user_id)
            .order_by(desc(code_executions.c.executed_at))
            .limit(max(1, int(limit)))
        )
        if session_id is not None:
            stmt = stmt.where(users.c.session_id == session_id)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()

        out: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["metadata"] = _from_json(item.pop("metadata_json"))
            out.append(item)
        return out

    def close(self) -> None:
        """Wait for pending writes and stop the background writer.

        Example:
            ```python
            log.close()
            ```
        """
        with self._lock:
            self._closed = True
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=True)
