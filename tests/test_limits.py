import os
import subprocess
import sys

import pytest

from safe_script_exec import SandboxPolicy
from safe_script_exec.execution.limits import build_preexec, limits_supported

posix_only = pytest.mark.skipif(os.name == "nt" or not limits_supported(), reason="rlimits are POSIX only")


@posix_only
def test_preexec_applies_limits_in_child() -> None:
    policy = SandboxPolicy(max_open_files=32, max_file_size_mb=1, timeout_seconds=4)
    completed = subprocess.run(
        [
            sys.executable,
            "-c",
            (
                "import resource\n"
                "print(resource.getrlimit(resource.RLIMIT_NOFILE)[0])\n"
                "print(resource.getrlimit(resource.RLIMIT_FSIZE)[0])\n"
                "print(resource.getrlimit(resource.RLIMIT_CPU)[0])\n"
                "print(resource.getrlimit(resource.RLIMIT_CORE)[0])\n"
            ),
        ],
        capture_output=True,
        text=True,
        timeout=30,
        preexec_fn=build_preexec(policy),
        check=False,
    )
    assert completed.returncode == 0, completed.stderr
    nofile, fsize, cpu, core = (int(line) for line in completed.stdout.split())
    assert nofile <= 32
    assert fsize <= 1024 * 1024
    assert cpu <= 5
    assert core == 0


@posix_only
def test_preexec_is_callable() -> None:
    assert callable(build_preexec(SandboxPolicy()))


@posix_only
def test_cpu_limit_tracks_request_timeout() -> None:
    policy = SandboxPolicy(timeout_seconds=60)
    completed = subprocess.run(
        [sys.executable, "-c", "import resource; print(resource.getrlimit(resource.RLIMIT_CPU)[0])"],
        capture_output=True,
        text=True,
        timeout=30,
        preexec_fn=build_preexec(policy, timeout_seconds=2),
        check=False,
    )
    assert completed.returncode == 0, completed.stderr
    assert int(completed.stdout) <= 3
