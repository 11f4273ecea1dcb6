from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import ValidationError


class ProcessState(str, Enum):
    """Lifecycle states of one interpreter process."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


@dataclass(slots=True)
class ExecutionRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = ExecutionRequest(code="print('hello')", timeout_seconds=5)
        ```
    """

    code: str
    timeout_seconds: float
    capture_output: bool = True

    def __post_init__(self) -> None:
        """Reject empty source and non-positive timeouts before any spawn.

        Example:
            ```python
            ExecutionRequest(code="", timeout_seconds=5)  # raises ValidationError
            ```
        """
        if not isinstance(self.code, str) or not self.code.strip():
            raise ValidationError("Missing required parameters: code")
        if isinstance(self.timeout_seconds, bool) or not isinstance(
            self.timeout_seconds, (int, float)
        ):
            raise ValidationError("timeout must be a number of seconds")
        if self.timeout_seconds <= 0:
            raise ValidationError("timeout must be positive")


@dataclass(slots=True)
class ProcessOutcome:
    """Normalized response returned by an execution engine.

    Example:
        ```python
        out = ProcessOutcome(stdout="", stderr="", returncode=0, state=ProcessState.COMPLETED, duration_ms=15)
        ```
    """

    stdout: str
    stderr: str
    returncode: int | None
    state: ProcessState
    duration_ms: int
    error: str | None = None
