import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from safe_script_exec import (
    AdmissionGate,
    ExecutionLog,
    ExecutionStatus,
    LocalEngine,
    SandboxPolicy,
    ValidationError,
    execute_code,
)
from safe_script_exec.execution.types import ProcessOutcome, ProcessState
from safe_script_exec.storage import create_db_engine


def _policy(tmp_path: Path, **overrides) -> SandboxPolicy:
    return SandboxPolicy(interpreter=sys.executable, temp_dir=str(tmp_path), **overrides)


def _leftovers(engine: LocalEngine) -> list[Path]:
    if not engine.temp_root.exists():
        return []
    return list(engine.temp_root.rglob("*"))


class _CountingEngine:
    def __init__(self, outcome: ProcessOutcome | None = None) -> None:
        self.calls = 0
        self.scripts: list[str] = []
        self.outcome = outcome or ProcessOutcome(
            stdout="", stderr="", returncode=0, state=ProcessState.COMPLETED, duration_ms=1
        )

    def execute(self, request, script):
        self.calls += 1
        self.scripts.append(script)
        return self.outcome


class _TrackingEngine(LocalEngine):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.procs = []

    def _spawn(self, script_path, run_dir, request):
        proc = super()._spawn(script_path, run_dir, request)
        self.procs.append(proc)
        return proc


class _RecordingLog:
    def __init__(self) -> None:
        self.submitted = []

    def submit(self, result, **kwargs):
        self.submitted.append((result, kwargs))


def test_hello_round_trip(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    engine = LocalEngine(policy=policy)

    result = execute_code('print("hello")', engine=engine, policy=policy, timeout_seconds=30)

    assert result.output == "hello"
    assert result.status is ExecutionStatus.SUCCESS
    assert result.error is None
    assert result.ok is True
    assert _leftovers(engine) == []


def test_multiline_output_between_sentinels(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    code = "for i in range(3):\n    print('line', i)\n"
    result = execute_code(code, engine=LocalEngine(policy=policy), policy=policy)

    assert result.status is ExecutionStatus.SUCCESS
    assert result.output == "line 0\nline 1\nline 2"
    assert "SSE_OUTPUT" not in result.output


def test_division_by_zero_reports_error(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    result = execute_code("print(1/0)", engine=LocalEngine(policy=policy), policy=policy, timeout_seconds=30)

    assert result.status is ExecutionStatus.ERROR
    assert "ZeroDivisionError: division by zero" in (result.error or "")
    assert "Traceback" not in (result.error or "")


def test_output_before_exception_is_kept(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    code = "print('partial')\nraise ValueError('boom')\n"
    result = execute_code(code, engine=LocalEngine(policy=policy), policy=policy)

    assert result.status is ExecutionStatus.ERROR
    assert result.output == "partial"
    assert result.error == "ValueError: boom"


def test_syntax_error_is_runtime_error(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    result = execute_code("def incomplete(", engine=LocalEngine(policy=policy), policy=policy)

    assert result.status is ExecutionStatus.ERROR
    assert "SyntaxError" in (result.error or "")


def test_system_exit_codes(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    engine = LocalEngine(policy=policy)

    clean = execute_code("print('bye')\nraise SystemExit(0)", engine=engine, policy=policy)
    assert clean.status is ExecutionStatus.SUCCESS
    assert clean.output == "bye"

    failed = execute_code("raise SystemExit(3)", engine=engine, policy=policy)
    assert failed.status is ExecutionStatus.ERROR
    assert failed.error == "SystemExit: 3"


def test_infinite_loop_times_out_and_cleans_up(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    engine = _TrackingEngine(policy=policy)

    result = execute_code("while True:\n    pass\n", engine=engine, policy=policy, timeout_seconds=1)

    assert result.status is ExecutionStatus.TIMEOUT
    assert result.duration_ms == 1000
    assert result.output == ""
    assert "timed out" in (result.error or "")
    assert len(engine.procs) == 1
    assert engine.procs[0].poll() is not None
    assert _leftovers(engine) == []


def test_concurrent_runs_keep_their_own_output(tmp_path: Path) -> None:
    policy = _policy(tmp_path, max_concurrent=4, acquire_timeout_seconds=120)
    engine = LocalEngine(policy=policy)
    gate = AdmissionGate.from_policy(policy)
    log = ExecutionLog(create_db_engine(f"sqlite:///{tmp_path / 'runs.db'}"))
    runs = 24

    def _submit(index: int):
        code = f"value = {index} * 3\nprint('run', {index}, value)\n"
        return execute_code(
            code, engine=engine, policy=policy, timeout_seconds=60, execution_log=log, gate=gate
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_submit, range(runs)))
    log.close()

    for index, result in enumerate(results):
        assert result.status is ExecutionStatus.SUCCESS, result.error
        assert result.output == f"run {index} {index * 3}"
    assert gate.in_flight == 0
    assert _leftovers(engine) == []
    assert len(log.recent(limit=runs * 2)) == runs


def test_unsafe_source_rejected_without_spawn() -> None:
    engine = _CountingEngine()
    log = _RecordingLog()

    result = execute_code("import os; os.system('ls')", engine=engine, execution_log=log)

    assert result.status is ExecutionStatus.ERROR
    assert "unsafe operations" in (result.error or "")
    assert result.duration_ms == 0
    assert engine.calls == 0
    assert log.submitted == []


@pytest.mark.parametrize(
    "code",
    [
        "import subprocess",
        "from os import path",
        "eval('1+1')",
        "exec('x = 1')",
        "__import__('os')",
        "open('data.txt')",
        "name = input()",
    ],
)
def test_denylisted_patterns_never_spawn(code: str) -> None:
    engine = _CountingEngine()
    result = execute_code(code, engine=engine)
    assert result.status is ExecutionStatus.ERROR
    assert engine.calls == 0


def test_empty_source_raises_validation_error() -> None:
    engine = _CountingEngine()
    with pytest.raises(ValidationError, match="code"):
        execute_code("   \n", engine=engine)
    assert engine.calls == 0


def test_non_positive_timeout_raises_validation_error() -> None:
    engine = _CountingEngine()
    with pytest.raises(ValidationError, match="timeout"):
        execute_code("print(1)", engine=engine, timeout_seconds=0)
    assert engine.calls == 0


def test_missing_interpreter_is_spawn_error(tmp_path: Path) -> None:
    policy = SandboxPolicy(interpreter=str(tmp_path / "no-such-python"), temp_dir=str(tmp_path))
    engine = LocalEngine(policy=policy)

    result = execute_code("print(1)", engine=engine, policy=policy)

    assert result.status is ExecutionStatus.ERROR
    assert result.duration_ms == 0
    assert (result.error or "").startswith("Process error")
    assert _leftovers(engine) == []


def test_without_capture_output_is_empty(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    result = execute_code(
        "x = 2 + 2", engine=LocalEngine(policy=policy), policy=policy, capture_output=False
    )
    assert result.status is ExecutionStatus.SUCCESS
    assert result.output == ""
    assert result.error is None


def test_stderr_without_sentinels_counts_as_error() -> None:
    engine = _CountingEngine(
        ProcessOutcome(
            stdout="", stderr="Segmentation fault\n", returncode=0,
            state=ProcessState.COMPLETED, duration_ms=4,
        )
    )
    result = execute_code("print(1)", engine=engine)
    assert result.status is ExecutionStatus.ERROR
    assert result.error == "Segmentation fault"


def test_nonzero_exit_without_stderr_gets_diagnostic() -> None:
    engine = _CountingEngine(
        ProcessOutcome(stdout="", stderr="", returncode=-9, state=ProcessState.COMPLETED, duration_ms=4)
    )
    result = execute_code("print(1)", engine=engine)
    assert result.status is ExecutionStatus.ERROR
    assert result.error == "Process exited with code -9"


def test_clean_exit_without_stderr_has_no_error() -> None:
    engine = _CountingEngine(
        ProcessOutcome(stdout="ok\n", stderr="", returncode=0, state=ProcessState.COMPLETED, duration_ms=3)
    )
    result = execute_code("print('ok')", engine=engine, policy=SandboxPolicy(max_output_kb=1))

    assert result.status is ExecutionStatus.SUCCESS
    assert result.output == "ok"
    assert result.error is None
    assert result.duration_ms == 3


def test_output_is_truncated_to_policy_limit() -> None:
    engine = _CountingEngine(
        ProcessOutcome(stdout="x" * 3000, stderr="", returncode=0, state=ProcessState.COMPLETED, duration_ms=4)
    )
    result = execute_code("print(1)", engine=engine, policy=SandboxPolicy(max_output_kb=1))
    assert result.output.startswith("x" * 1024)
    assert "output truncated" in result.output


def test_result_is_handed_to_execution_log() -> None:
    engine = _CountingEngine(
        ProcessOutcome(stdout="4", stderr="", returncode=0, state=ProcessState.COMPLETED, duration_ms=7)
    )
    log = _RecordingLog()

    result = execute_code(
        "print(2 + 2)", engine=engine, execution_log=log, session_id="abc", metadata={"k": "v"}
    )

    assert len(log.submitted) == 1
    logged, kwargs = log.submitted[0]
    assert logged is result
    assert kwargs == {"session_id": "abc", "language": "python", "metadata": {"k": "v"}}


def test_full_gate_rejects_without_spawn() -> None:
    engine = _CountingEngine()
    gate = AdmissionGate(max_concurrent=1, acquire_timeout_seconds=0.05)
    held = threading.Event()
    release = threading.Event()

    def _hold() -> None:
        with gate.slot():
            held.set()
            release.wait(5)

    worker = threading.Thread(target=_hold)
    worker.start()
    try:
        assert held.wait(5)
        result = execute_code("print(1)", engine=engine, gate=gate)
    finally:
        release.set()
        worker.join()

    assert result.status is ExecutionStatus.ERROR
    assert "No execution slot available" in (result.error or "")
    assert engine.calls == 0


def test_to_dict_matches_public_contract(tmp_path: Path) -> None:
    policy = _policy(tmp_path)
    result = execute_code("print('hi')", engine=LocalEngine(policy=policy), policy=policy)
    payload = result.to_dict()
    assert set(payload) == {"output", "error", "duration_ms", "status"}
    assert payload["status"] == "success"
    assert isinstance(payload["duration_ms"], int)


def test_run_code_rejects_policy_and_policy_file_together(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("[policy]\ntimeout_seconds = 5\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Provide either 'policy' or 'policy_file'"):
        execute_code("print(1)", engine=_CountingEngine(), policy=SandboxPolicy(), policy_file=str(policy_file))
