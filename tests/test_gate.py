import threading
import time

import pytest

from safe_script_exec import AdmissionGate, CapacityError, SandboxPolicy


def test_gate_rejects_zero_slots() -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        AdmissionGate(0, 1.0)


def test_gate_from_policy() -> None:
    gate = AdmissionGate.from_policy(SandboxPolicy(max_concurrent=3, acquire_timeout_seconds=2))
    assert gate.max_concurrent == 3
    assert gate.acquire_timeout_seconds == 2


def test_slot_tracks_in_flight_and_releases_on_error() -> None:
    gate = AdmissionGate(2, 1.0)
    with gate.slot():
        assert gate.in_flight == 1
    assert gate.in_flight == 0

    with pytest.raises(RuntimeError):
        with gate.slot():
            raise RuntimeError("boom")
    assert gate.in_flight == 0


def test_slot_times_out_when_full() -> None:
    gate = AdmissionGate(1, 0.05)
    with gate.slot():
        with pytest.raises(CapacityError, match="No execution slot available"):
            with gate.slot():
                pass


def test_gate_caps_concurrency() -> None:
    gate = AdmissionGate(2, 10.0)
    lock = threading.Lock()
    peak = 0

    def _work() -> None:
        nonlocal peak
        with gate.slot():
            with lock:
                peak = max(peak, gate.in_flight)
            time.sleep(0.05)

    threads = [threading.Thread(target=_work) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert peak <= 2
    assert gate.in_flight == 0
