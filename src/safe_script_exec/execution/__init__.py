from .engine import ExecutionEngine
from .gate import AdmissionGate
from .local_engine import LocalEngine
from .types import ExecutionRequest, ProcessOutcome, ProcessState

__all__ = [
    "AdmissionGate",
    "ExecutionEngine",
    "ExecutionRequest",
    "LocalEngine",
    "ProcessOutcome",
    "ProcessState",
]
