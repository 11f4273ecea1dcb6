from __future__ import annotations


class SandboxError(Exception):
    """Base class for errors raised by safe-script-exec.

    Example:
        ```python
        try:
            execute_code("", engine=engine)
        except SandboxError as exc:
            print(exc)
        ```
    """


class ValidationError(SandboxError, ValueError):
    """Raised when an execution request is malformed.

    Example:
        ```python
        raise ValidationError("Missing required parameters: code")
        ```
    """


class SafetyRejection(SandboxError):
    """Raised when source text matches the pre-filter denylist.

    Example:
        ```python
        raise SafetyRejection(["__import__"])
        ```
    """

    def __init__(self, matches: list[str]) -> None:
        """Store matched denylist patterns.

        Example:
            ```python
            exc = SafetyRejection(["__import__"])
            ```
        """
        self.matches = list(matches)
        super().__init__(
            "Code contains potentially unsafe operations: " + ", ".join(self.matches)
        )


class SpawnError(SandboxError):
    """Raised when the interpreter process cannot be started.

    Example:
        ```python
        raise SpawnError("Process error: [Errno 2] No such file or directory")
        ```
    """


class CapacityError(SandboxError):
    """Raised when no execution slot frees up within the acquire timeout.

    Example:
        ```python
        raise CapacityError("No execution slot available after 60s")
        ```
    """
