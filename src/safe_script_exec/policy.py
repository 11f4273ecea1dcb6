from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

_FALLBACK_BLOCKED_PATTERNS = [
    r"import\s+os",
    r"import\s+subprocess",
    r"import\s+sys",
    r"from\s+os",
    r"from\s+subprocess",
    r"exec\s*\(",
    r"eval\s*\(",
    r"__import__",
    r"open\s*\(",
    r"file\s*\(",
    r"input\s*\(",
    r"raw_input\s*\(",
]


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the raw policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "language": "python",
            "interpreter": "python3",
            "timeout_seconds": 30,
            "memory_limit_mb": 256,
            "cpu_time_limit_seconds": 0,
            "max_output_kb": 128,
            "max_file_size_mb": 10,
            "max_open_files": 64,
            "max_concurrent": 4,
            "acquire_timeout_seconds": 60,
            "blocked_patterns": list(_FALLBACK_BLOCKED_PATTERNS),
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings policy field.

    Example:
        ```python
        patterns = _list_of_str([r"eval\\s*\\("], "blocked_patterns")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _positive(value: Any, field_name: str, *, allow_zero: bool = False) -> float:
    """Validate a numeric policy field that must be positive.

    Example:
        ```python
        seconds = _positive(30, "timeout_seconds")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"'{field_name}' must be positive")
    return value


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_LANGUAGE = str(_DEFAULT_POLICY_RAW.get("language", "python"))
DEFAULT_INTERPRETER = str(_DEFAULT_POLICY_RAW.get("interpreter", "python3"))
DEFAULT_TIMEOUT_SECONDS = float(_DEFAULT_POLICY_RAW.get("timeout_seconds", 30))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", 256))
DEFAULT_CPU_TIME_LIMIT_SECONDS = int(_DEFAULT_POLICY_RAW.get("cpu_time_limit_seconds", 0))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_POLICY_RAW.get("max_output_kb", 128))
DEFAULT_MAX_FILE_SIZE_MB = int(_DEFAULT_POLICY_RAW.get("max_file_size_mb", 10))
DEFAULT_MAX_OPEN_FILES = int(_DEFAULT_POLICY_RAW.get("max_open_files", 64))
DEFAULT_MAX_CONCURRENT = int(_DEFAULT_POLICY_RAW.get("max_concurrent", 4))
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = float(_DEFAULT_POLICY_RAW.get("acquire_timeout_seconds", 60))
DEFAULT_BLOCKED_PATTERNS = _list_of_str(
    _DEFAULT_POLICY_RAW.get("blocked_patterns", _FALLBACK_BLOCKED_PATTERNS), "blocked_patterns"
)


@dataclass(slots=True)
class SandboxPolicy:
    """Execution policy for submitted scripts.

    Example:
        ```python
        policy = SandboxPolicy(timeout_seconds=5, max_concurrent=2)
        ```
    """

    language: str = DEFAULT_LANGUAGE
    interpreter: str = DEFAULT_INTERPRETER
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    cpu_time_limit_seconds: int = DEFAULT_CPU_TIME_LIMIT_SECONDS
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    max_file_size_mb: int = DEFAULT_MAX_FILE_SIZE_MB
    max_open_files: int = DEFAULT_MAX_OPEN_FILES
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    acquire_timeout_seconds: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS
    temp_dir: str | None = None
    blocked_patterns: list[str] = field(default_factory=lambda: DEFAULT_BLOCKED_PATTERNS.copy())
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits and compile denylist patterns.

        Example:
            ```python
            SandboxPolicy(timeout_seconds=1)
            ```
        """
        _positive(self.timeout_seconds, "timeout_seconds")
        _positive(self.memory_limit_mb, "memory_limit_mb", allow_zero=True)
        _positive(self.cpu_time_limit_seconds, "cpu_time_limit_seconds", allow_zero=True)
        _positive(self.max_output_kb, "max_output_kb")
        _positive(self.max_file_size_mb, "max_file_size_mb", allow_zero=True)
        _positive(self.max_open_files, "max_open_files", allow_zero=True)
        _positive(self.acquire_timeout_seconds, "acquire_timeout_seconds")
        if isinstance(self.max_concurrent, bool) or not isinstance(self.max_concurrent, int):
            raise ValueError("'max_concurrent' must be an integer")
        if self.max_concurrent < 1:
            raise ValueError("'max_concurrent' must be at least 1")
        for pattern in self.blocked_patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid blocked pattern {pattern!r}: {exc}") from exc

    def cpu_seconds_for(self, timeout_seconds: float | None = None) -> int:
        """CPU-time rlimit for one run, derived from its wall-clock timeout when unset.

        Example:
            ```python
            SandboxPolicy().cpu_seconds_for(5)  # 6
            ```
        """
        if self.cpu_time_limit_seconds:
            return int(self.cpu_time_limit_seconds)
        wall = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        return int(wall) + 1

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = SandboxPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        temp_dir = raw.get("temp_dir")
        if temp_dir is not None and not isinstance(temp_dir, str):
            raise ValueError("'temp_dir' must be a string")
        return cls(
            language=str(raw.get("language", DEFAULT_LANGUAGE)),
            interpreter=str(raw.get("interpreter", DEFAULT_INTERPRETER)),
            timeout_seconds=_positive(
                raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "timeout_seconds"
            ),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            cpu_time_limit_seconds=int(
                raw.get("cpu_time_limit_seconds", DEFAULT_CPU_TIME_LIMIT_SECONDS)
            ),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            max_file_size_mb=int(raw.get("max_file_size_mb", DEFAULT_MAX_FILE_SIZE_MB)),
            max_open_files=int(raw.get("max_open_files", DEFAULT_MAX_OPEN_FILES)),
            max_concurrent=int(raw.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
            acquire_timeout_seconds=_positive(
                raw.get("acquire_timeout_seconds", DEFAULT_ACQUIRE_TIMEOUT_SECONDS),
                "acquire_timeout_seconds",
            ),
            temp_dir=temp_dir,
            blocked_patterns=_list_of_str(
                raw.get("blocked_patterns", DEFAULT_BLOCKED_PATTERNS), "blocked_patterns"
            ),
            config_path=config_path,
        )


class ExecutionStatus(str, Enum):
    """Terminal status of one execution."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Normalized execution result returned by `execute_code`.

    Example:
        ```python
        result = ExecutionResult(code="print(1)", output="1", error=None, status=ExecutionStatus.SUCCESS, duration_ms=12)
        ```
    """

    code: str
    output: str
    error: str | None
    status: ExecutionStatus
    duration_ms: int

    @property
    def ok(self) -> bool:
        """Return True when the run finished with status `success`.

        Example:
            ```python
            if result.ok:
                print(result.output)
            ```
        """
        return self.status is ExecutionStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-facing payload for API callers.

        Example:
            ```python
            payload = result.to_dict()
            ```
        """
        return {
            "output": self.output,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
        }
