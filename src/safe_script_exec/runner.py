from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .errors import CapacityError, SafetyRejection
from .execution.engine import ExecutionEngine
from .execution.gate import AdmissionGate
from .execution.types import ExecutionRequest, ProcessOutcome, ProcessState
from .framing import extract_error, extract_output, new_token, wrap_source
from .logger import get_logger
from .policy import ExecutionResult, ExecutionStatus, SandboxPolicy
from .prefilter import check_source

if TYPE_CHECKING:
    from .storage.execution_log import ExecutionLog

logger = get_logger(__name__)


def _resolve_policy(policy: SandboxPolicy | None, policy_file: str | None) -> SandboxPolicy:
    """Resolve the effective policy object for a run.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return SandboxPolicy.from_file(policy_file)
    if policy is None:
        return SandboxPolicy()
    if policy.config_path is not None:
        return SandboxPolicy.from_file(policy.config_path)
    return policy


def _truncate(text: str, max_output_kb: int) -> str:
    """Cap text at the policy's output size.

    Example:
        ```python
        out = _truncate("x" * 200_000, 128)
        ```
    """
    limit = max_output_kb * 1024
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [output truncated, {len(text) - limit} characters omitted]"


def _rejected(code: str, message: str) -> ExecutionResult:
    """Build the result for a request refused before any process is spawned.

    Example:
        ```python
        result = _rejected("import os", "Code contains potentially unsafe operations")
        ```
    """
    return ExecutionResult(
        code=code,
        output="",
        error=message,
        status=ExecutionStatus.ERROR,
        duration_ms=0,
    )


def _to_result(
    code: str, outcome: ProcessOutcome, token: str, policy: SandboxPolicy
) -> ExecutionResult:
    """Map a process outcome onto the terminal execution status.

    Example:
        ```python
        result = _to_result("print(1)", outcome, token, SandboxPolicy())
        ```
    """
    if outcome.state is ProcessState.TIMED_OUT:
        return ExecutionResult(
            code=code,
            output="",
            error=outcome.error or "Execution timed out",
            status=ExecutionStatus.TIMEOUT,
            duration_ms=outcome.duration_ms,
        )
    if outcome.state is not ProcessState.COMPLETED:
        return ExecutionResult(
            code=code,
            output="",
            error=outcome.error or "Process error",
            status=ExecutionStatus.ERROR,
            duration_ms=0,
        )

    output = _truncate(extract_output(outcome.stdout, token), policy.max_output_kb)
    error = extract_error(outcome.stderr, token)
    if outcome.returncode == 0 and error is None:
        status = ExecutionStatus.SUCCESS
    else:
        status = ExecutionStatus.ERROR
        if error is None:
            error = f"Process exited with code {outcome.returncode}"
    return ExecutionResult(
        code=code,
        output=output,
        error=None if error is None else _truncate(error, policy.max_output_kb),
        status=status,
        duration_ms=outcome.duration_ms,
    )


def execute_code(
    code: str,
    engine: ExecutionEngine,
    timeout_seconds: float | None = None,
    capture_output: bool = True,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
    execution_log: "ExecutionLog | None" = None,
    session_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    gate: AdmissionGate | None = None,
) -> ExecutionResult:
    """Pre-filter, frame and run a script, then hand the result to the log.

    Raises `ValidationError` for empty source or a bad timeout. Every other
    failure (denylist match, no free slot, non-zero exit, timeout, spawn
    failure) comes back as an `error` or `timeout` result.

    Example:
        ```python
        from safe_script_exec import LocalEngine, execute_code
        engine = LocalEngine()
        result = execute_code("print('hello')", engine=engine, timeout_seconds=5)
        ```
    """
    resolved_policy = _resolve_policy(policy, policy_file)
    request = ExecutionRequest(
        code=code,
        timeout_seconds=(
            resolved_policy.timeout_seconds if timeout_seconds is None else timeout_seconds
        ),
        capture_output=capture_output,
    )

    try:
        check_source(request.code, resolved_policy.blocked_patterns)
    except SafetyRejection as exc:
        logger.warning("Rejected by pre-filter: {matches}", matches=exc.matches)
        return _rejected(request.code, str(exc))

    token = new_token()
    script = wrap_source(request.code, token)
    try:
        if gate is None:
            outcome = engine.execute(request, script)
        else:
            with gate.slot():
                outcome = engine.execute(request, script)
    except CapacityError as exc:
        logger.warning("Execution refused: {error}", error=str(exc))
        return _rejected(request.code, str(exc))

    result = _to_result(request.code, outcome, token, resolved_policy)
    if execution_log is not None:
        execution_log.submit(
            result,
            session_id=session_id,
            language=resolved_policy.language,
            metadata=metadata,
        )
    return result
