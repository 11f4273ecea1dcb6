from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

from .errors import ValidationError
from .execution.engine import ExecutionEngine
from .execution.gate import AdmissionGate
from .policy import ExecutionStatus, SandboxPolicy
from .runner import execute_code
from .storage.execution_log import ExecutionLog


@dataclass(slots=True)
class ToolResponse:
    """Envelope returned by every tool call.

    Example:
        ```python
        response = ToolResponse(success=True, data={"output": "2"}, execution_time_ms=14)
        ```
    """

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-facing envelope.

        Example:
            ```python
            payload = response.to_dict()
            ```
        """
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
        }


class Tool(Protocol):
    name: str
    description: str
    parameters: dict[str, dict[str, Any]]

    def execute(self, parameters: dict[str, Any]) -> ToolResponse:
        """Run the tool with caller-supplied parameters.

        Example:
            ```python
            response = tool.execute({"code": "print(1)"})
            ```
        """
        ...


def _missing_parameters(parameters: dict[str, Any], required: list[str]) -> list[str]:
    """Return required parameter names that are absent or None.

    Example:
        ```python
        _missing_parameters({"timeout": 5}, ["code"])  # ['code']
        ```
    """
    return [name for name in required if parameters.get(name) is None]


class PythonExecutionTool:
    """Expose sandboxed script execution as a named tool.

    Example:
        ```python
        tool = PythonExecutionTool(LocalEngine())
        response = tool.execute({"code": "print(2 + 2)", "timeout": 5})
        ```
    """

    name = "python_execution"
    description = (
        "Execute Python code in a sandboxed interpreter process. "
        "Supports data analysis and calculations."
    )

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        policy: SandboxPolicy | None = None,
        execution_log: ExecutionLog | None = None,
        gate: AdmissionGate | None = None,
        session_id: str | None = None,
    ) -> None:
        """Bind the tool to its engine, policy, log and admission gate.

        Example:
            ```python
            tool = PythonExecutionTool(engine, policy=SandboxPolicy(), gate=AdmissionGate(4, 60))
            ```
        """
        self._engine = engine
        self._policy = policy or SandboxPolicy()
        self._execution_log = execution_log
        self._gate = gate
        self._session_id = session_id
        self.parameters: dict[str, dict[str, Any]] = {
            "code": {"type": "string", "required": True, "description": "Python code to execute"},
            "timeout": {
                "type": "number",
                "default": self._policy.timeout_seconds,
                "description": "Execution timeout in seconds",
            },
            "capture_output": {
                "type": "boolean",
                "default": True,
                "description": "Capture stdout and stderr",
            },
        }

    def execute(self, parameters: dict[str, Any]) -> ToolResponse:
        """Validate parameters, run the code, and wrap the result.

        Example:
            ```python
            response = tool.execute({"code": "print('hello')"})
            response.data["output"]  # 'hello'
            ```
        """
        start = time.perf_counter()
        missing = _missing_parameters(parameters, ["code"])
        if missing:
            return ToolResponse(
                success=False,
                error=f"Missing required parameters: {', '.join(missing)}",
            )
        try:
            result = execute_code(
                parameters["code"],
                engine=self._engine,
                timeout_seconds=parameters.get("timeout"),
                capture_output=bool(parameters.get("capture_output", True)),
                policy=self._policy,
                execution_log=self._execution_log,
                session_id=parameters.get("session_id") or self._session_id,
                metadata={"tool": self.name},
                gate=self._gate,
            )
        except ValidationError as exc:
            return ToolResponse(success=False, error=str(exc))

        data = result.to_dict()
        data["code"] = result.code
        return ToolResponse(
            success=result.ok,
            data=data,
            error=result.error if result.status is ExecutionStatus.ERROR else None,
            execution_time_ms=int(round((time.perf_counter() - start) * 1000)),
        )


@dataclass(slots=True)
class ToolRegistry:
    """Explicit name-to-tool mapping built once and passed to call sites.

    Example:
        ```python
        registry = ToolRegistry()
        registry.register(PythonExecutionTool(engine))
        tool = registry.get("python_execution")
        ```
    """

    _tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        """Add or replace a tool under its name.

        Example:
            ```python
            registry.register(tool)
            ```
        """
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Remove a tool if present.

        Example:
            ```python
            registry.unregister("python_execution")
            ```
        """
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """Return a tool by name, or None.

        Example:
            ```python
            tool = registry.get("python_execution")
            ```
        """
        return self._tools.get(name)

    def names(self) -> list[str]:
        """Return registered tool names in registration order.

        Example:
            ```python
            registry.names()  # ['python_execution']
            ```
        """
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        """Return name, description and parameter schema for each tool.

        Example:
            ```python
            catalog = registry.describe()
            ```
        """
        return [
            {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        """Return True when a tool with `name` is registered.

        Example:
            ```python
            "python_execution" in registry
            ```
        """
        return name in self._tools

    def __len__(self) -> int:
        """Return the number of registered tools.

        Example:
            ```python
            len(registry)
            ```
        """
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        """Iterate over registered tools.

        Example:
            ```python
            for tool in registry:
                print(tool.name)
            ```
        """
        return iter(self._tools.values())


def build_tool_registry(
    engine: ExecutionEngine,
    *,
    policy: SandboxPolicy | None = None,
    execution_log: ExecutionLog | None = None,
    gate: AdmissionGate | None = None,
) -> ToolRegistry:
    """Build the registry of built-in tools for one application instance.

    A gate sized by the policy is created when none is given.

    Example:
        ```python
        registry = build_tool_registry(LocalEngine(), execution_log=ExecutionLog(create_db_engine()))
        ```
    """
    resolved_policy = policy or SandboxPolicy()
    registry = ToolRegistry()
    registry.register(
        PythonExecutionTool(
            engine,
            policy=resolved_policy,
            execution_log=execution_log,
            gate=gate or AdmissionGate.from_policy(resolved_policy),
        )
    )
    return registry
