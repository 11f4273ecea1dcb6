from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from ..errors import CapacityError


class AdmissionGate:
    """Cap the number of interpreter processes running at the same time.

    Callers queue on a bounded semaphore; a caller that waits longer than
    `acquire_timeout_seconds` gets `CapacityError` instead of a slot.

    Example:
        ```python
        gate = AdmissionGate(max_concurrent=4, acquire_timeout_seconds=60)
        with gate.slot():
            outcome = engine.execute(request, script)
        ```
    """

    def __init__(self, max_concurrent: int, acquire_timeout_seconds: float) -> None:
        """Initialize the gate with a fixed number of slots.

        Example:
            ```python
            gate = AdmissionGate(2, 5.0)
            ```
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.acquire_timeout_seconds = acquire_timeout_seconds
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._in_flight = 0

    @classmethod
    def from_policy(cls, policy) -> "AdmissionGate":
        """Build a gate sized by a `SandboxPolicy`.

        Example:
            ```python
            gate = AdmissionGate.from_policy(SandboxPolicy(max_concurrent=2))
            ```
        """
        return cls(policy.max_concurrent, policy.acquire_timeout_seconds)

    @property
    def in_flight(self) -> int:
        """Number of slots currently held.

        Example:
            ```python
            busy = gate.in_flight
            ```
        """
        with self._lock:
            return self._in_flight

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold one execution slot for the duration of the block.

        Example:
            ```python
            with gate.slot():
                ...
            ```
        """
        if not self._semaphore.acquire(timeout=self.acquire_timeout_seconds):
            raise CapacityError(
                f"No execution slot available after {self.acquire_timeout_seconds}s"
            )
        with self._lock:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()
