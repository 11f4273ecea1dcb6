from __future__ import annotations

from typing import Any, Callable

from ..policy import SandboxPolicy

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None


def _clamp(limit: int, hard: int) -> tuple[int, int]:
    """Return a (soft, hard) pair that never raises the existing hard limit.

    Example:
        ```python
        soft, hard = _clamp(1024, resource.RLIM_INFINITY)
        ```
    """
    if hard in (-1, _resource.RLIM_INFINITY):
        return limit, limit
    target = min(limit, hard)
    return target, target


def _apply(name: str, limit: int) -> None:
    """Lower one rlimit on the current process.

    Example:
        ```python
        _apply("RLIMIT_NOFILE", 64)
        ```
    """
    key = getattr(_resource, name, None)
    if key is None:
        return
    _, current_hard = _resource.getrlimit(key)
    _resource.setrlimit(key, _clamp(limit, current_hard))


def limits_supported() -> bool:
    """Return True when rlimits can be applied on this platform.

    Example:
        ```python
        if not limits_supported():
            print("only the wall-clock timeout applies")
        ```
    """
    return _resource is not None


def build_preexec(
    policy: SandboxPolicy, timeout_seconds: float | None = None
) -> Callable[[], None] | None:
    """Return a `preexec_fn` that applies the policy's rlimits in the child.

    Zero-valued limits are skipped. Returns None where rlimits are unavailable.

    Example:
        ```python
        subprocess.Popen(cmd, preexec_fn=build_preexec(policy, timeout_seconds=5))
        ```
    """
    if _resource is None:
        return None

    limits: list[tuple[str, int]] = [("RLIMIT_CORE", 0)]
    if policy.memory_limit_mb:
        limits.append(("RLIMIT_AS", int(policy.memory_limit_mb) * 1024 * 1024))
    limits.append(("RLIMIT_CPU", policy.cpu_seconds_for(timeout_seconds)))
    if policy.max_file_size_mb:
        limits.append(("RLIMIT_FSIZE", int(policy.max_file_size_mb) * 1024 * 1024))
    if policy.max_open_files:
        limits.append(("RLIMIT_NOFILE", int(policy.max_open_files)))

    def _apply_limits() -> None:
        """Apply collected limits; runs in the forked child before exec.

        Example:
            ```python
            _apply_limits()
            ```
        """
        for name, value in limits:
            try:
                _apply(name, value)
            except (ValueError, OSError):
                # Containers may forbid some limits; the others still apply.
                continue

    return _apply_limits
