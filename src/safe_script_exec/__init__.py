from .errors import CapacityError, SafetyRejection, SandboxError, SpawnError, ValidationError
from .execution.gate import AdmissionGate
from .execution.local_engine import LocalEngine
from .policy import ExecutionResult, ExecutionStatus, SandboxPolicy
from .runner import execute_code
from .storage.execution_log import ExecutionLog
from .tools import PythonExecutionTool, ToolRegistry, ToolResponse, build_tool_registry

__all__ = [
    "AdmissionGate",
    "CapacityError",
    "ExecutionLog",
    "ExecutionResult",
    "ExecutionStatus",
    "LocalEngine",
    "PythonExecutionTool",
    "SafetyRejection",
    "SandboxError",
    "SandboxPolicy",
    "SpawnError",
    "ToolRegistry",
    "ToolResponse",
    "ValidationError",
    "build_tool_registry",
    "execute_code",
]
