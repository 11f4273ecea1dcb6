from __future__ import annotations

import os
import shutil
import signal
import subprocess
import tempfile
import time
from pathlib import Path

from ..errors import SpawnError
from ..logger import get_logger
from ..policy import SandboxPolicy
from .limits import build_preexec
from .types import ExecutionRequest, ProcessOutcome, ProcessState

logger = get_logger(__name__)


def _resolve_interpreter(name: str) -> str:
    """Resolve an interpreter name against PATH, keeping it as-is if not found.

    Example:
        ```python
        interpreter = _resolve_interpreter("python3")
        ```
    """
    return shutil.which(name) or name


def _child_env(run_dir: Path) -> dict[str, str]:
    """Return the scrubbed environment handed to the interpreter.

    Example:
        ```python
        env = _child_env(Path("/tmp/safe-script-exec/run_x"))
        ```
    """
    return {
        "PATH": os.environ.get("PATH", os.defpath),
        "HOME": str(run_dir),
        "TMPDIR": str(run_dir),
        "LANG": "C.UTF-8",
    }


class LocalEngine:
    """Run framed scripts in a local interpreter process.

    Each run gets a private working directory holding a uniquely named script
    file. The interpreter starts in isolated mode (`-I`) with a scrubbed
    environment, its own session, and the policy's rlimits. On deadline expiry
    the whole process group gets SIGKILL. The run directory is removed on
    every exit path.

    Example:
        ```python
        engine = LocalEngine(policy=SandboxPolicy(timeout_seconds=5))
        ```
    """

    def __init__(self, *, policy: SandboxPolicy | None = None, interpreter: str | None = None) -> None:
        """Initialize a local engine for one policy.

        Example:
            ```python
            engine = LocalEngine(interpreter=sys.executable)
            ```
        """
        self._policy = policy or SandboxPolicy()
        self._interpreter = _resolve_interpreter(interpreter or self._policy.interpreter)
        base = Path(self._policy.temp_dir) if self._policy.temp_dir else Path(tempfile.gettempdir())
        self._temp_root = base.expanduser() / "safe-script-exec"

    @property
    def temp_root(self) -> Path:
        """Directory under which per-run directories are created.

        Example:
            ```python
            leftovers = list(engine.temp_root.iterdir())
            ```
        """
        return self._temp_root

    def execute(self, request: ExecutionRequest, script: str) -> ProcessOutcome:
        """Execute one framed script and return its outcome.

        Example:
            ```python
            outcome = engine.execute(ExecutionRequest(code="print(1)", timeout_seconds=5), wrap_source("print(1)", token))
            ```
        """
        run_dir: Path | None = None
        try:
            run_dir = self._make_run_dir()
            script_path = self._write_script(run_dir, script)
            return self._run(script_path, run_dir, request)
        except SpawnError as exc:
            logger.error("Interpreter could not be started: {error}", error=str(exc))
            return ProcessOutcome(
                stdout="",
                stderr="",
                returncode=None,
                state=ProcessState.SPAWN_FAILED,
                duration_ms=0,
                error=str(exc),
            )
        finally:
            if run_dir is not None:
                self._cleanup(run_dir)

    def _make_run_dir(self) -> Path:
        """Create the private working directory for one run.

        Example:
            ```python
            run_dir = engine._make_run_dir()
            ```
        """
        try:
            self._temp_root.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix="run_", dir=self._temp_root))
        except OSError as exc:
            raise SpawnError(f"Process error: could not create run directory: {exc}") from exc

    def _write_script(self, run_dir: Path, script: str) -> Path:
        """Write the framed script to a uniquely named file in `run_dir`.

        Example:
            ```python
            path = engine._write_script(run_dir, "print(1)")
            ```
        """
        try:
            fd, name = tempfile.mkstemp(prefix="script_", suffix=".py", dir=run_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(script)
        except OSError as exc:
            raise SpawnError(f"Process error: could not write script: {exc}") from exc
        return Path(name)

    def _spawn(self, script_path: Path, run_dir: Path, request: ExecutionRequest) -> subprocess.Popen[str]:
        """Start the interpreter on `script_path`.

        Example:
            ```python
            proc = engine._spawn(script_path, run_dir, request)
            ```
        """
        stream = subprocess.PIPE if request.capture_output else None
        cmd = [self._interpreter, "-I", "-u", "-X", "utf8", str(script_path)]
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=stream,
                stderr=stream,
                cwd=str(run_dir),
                env=_child_env(run_dir),
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name != "nt",
                preexec_fn=(
                    build_preexec(self._policy, request.timeout_seconds) if os.name != "nt" else None
                ),
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SpawnError(f"Process error: {exc}") from exc
        logger.debug("Spawned interpreter pid={pid}", pid=proc.pid)
        return proc

    def _run(self, script_path: Path, run_dir: Path, request: ExecutionRequest) -> ProcessOutcome:
        """Race the process against the deadline and collect its streams.

        Example:
            ```python
            outcome = engine._run(script_path, run_dir, request)
            ```
        """
        timeout = request.timeout_seconds
        with self._spawn(script_path, run_dir, request) as proc:
            start = time.perf_counter()
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._kill(proc)
                proc.wait()
                logger.warning(
                    "Killed pid={pid} after {timeout}s deadline", pid=proc.pid, timeout=timeout
                )
                return ProcessOutcome(
                    stdout="",
                    stderr="",
                    returncode=proc.returncode,
                    state=ProcessState.TIMED_OUT,
                    duration_ms=int(round(timeout * 1000)),
                    error=f"Execution timed out after {timeout}s",
                )
            except BaseException:
                self._kill(proc)
                raise
            duration_ms = int(round((time.perf_counter() - start) * 1000))

        return ProcessOutcome(
            stdout=stdout or "",
            stderr=stderr or "",
            returncode=proc.returncode,
            state=ProcessState.COMPLETED,
            duration_ms=duration_ms,
        )

    def _kill(self, proc: subprocess.Popen[str]) -> None:
        """Hard-kill the process and everything in its session.

        Example:
            ```python
            engine._kill(proc)
            ```
        """
        if os.name == "nt":
            proc.kill()
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            # Already reaped.
            return
        except PermissionError:
            proc.kill()

    def _cleanup(self, run_dir: Path) -> None:
        """Remove the run directory and the script inside it.

        Example:
            ```python
            engine._cleanup(run_dir)
            ```
        """
        try:
            shutil.rmtree(run_dir)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Failed to remove run directory {path}: {error}", path=str(run_dir), error=str(exc))
