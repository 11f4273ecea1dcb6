from __future__ import annotations

from typing import Protocol

from .types import ExecutionRequest, ProcessOutcome


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest, script: str) -> ProcessOutcome:
        """Run one framed script and return the normalized process outcome.

        Example:
            ```python
            outcome = engine.execute(ExecutionRequest(code="print(1)", timeout_seconds=5), script)
            ```
        """
        ...
