from __future__ import annotations

import argparse
import json
import os
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_script_exec import (
    AdmissionGate,
    ExecutionLog,
    ExecutionStatus,
    LocalEngine,
    SandboxPolicy,
    ValidationError,
    build_tool_registry,
    execute_code,
)
from safe_script_exec.logger import init_logger
from safe_script_exec.prefilter import find_unsafe_patterns
from safe_script_exec.storage import create_db_engine

_CONSOLE = Console(no_color=False)

_STATUS_STYLES = {
    ExecutionStatus.SUCCESS.value: "bold green",
    ExecutionStatus.ERROR.value: "bold red",
    ExecutionStatus.TIMEOUT.value: "bold yellow",
}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m sse")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    """Attach the shared script-source arguments to a subcommand.

    Example:
        ```python
        _add_source_arguments(run_cmd)
        ```
    """
    parser.add_argument(
        "source",
        nargs="?",
        help="Path to a Python script, or '-' to read from stdin.",
    )
    parser.add_argument(
        "--code",
        help="Inline source text. Takes precedence over SOURCE.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for safe-script-exec.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m sse",
        description=(
            "safe-script-exec CLI\n"
            "Run Python scripts in a time-limited, resource-limited interpreter process\n"
            "and inspect the execution log."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m sse run script.py\n"
            "  python -m sse run --code \"print('hello')\" --timeout 5\n"
            "  echo \"print(2 + 2)\" | python -m sse run - --json\n"
            "  python -m sse check script.py\n"
            "  python -m sse history --limit 10\n"
            "  python -m sse tools\n\n"
            "Environment:\n"
            "  SSE_POLICY_FILE   policy TOML used when --policy-file is not given\n"
            "  DATABASE_URL      execution log database (default: ~/.safe_script_exec/executions.db)\n"
            "  SSE_LOG_LEVEL     log level (default: INFO)"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--policy-file",
        default=os.environ.get("SSE_POLICY_FILE"),
        help=(
            "Policy TOML file with a [policy] table.\n"
            "Example: --policy-file ./policy.toml"
        ),
    )
    parser.add_argument(
        "--database-url",
        help=(
            "SQLAlchemy URL for the execution log.\n"
            "Examples: sqlite:///./executions.db, postgresql://user@host/db"
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute a script and show its output.",
        description=(
            "Execute a script through the pre-filter, output framing and process runner.\n"
            "Exit status is 0 on success and 1 on error or timeout."
        ),
        epilog=(
            "Examples:\n"
            "  python -m sse run script.py --timeout 10\n"
            "  python -m sse run --code \"print(1/0)\""
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_source_arguments(run_cmd)
    run_cmd.add_argument(
        "--timeout",
        type=float,
        help="Wall-clock timeout in seconds (default: policy timeout).",
    )
    run_cmd.add_argument(
        "--no-capture",
        action="store_true",
        help="Let the script write straight to this terminal.",
    )
    run_cmd.add_argument(
        "--session",
        help="Session id that owns the execution record (default: default-session).",
    )
    run_cmd.add_argument(
        "--no-log",
        action="store_true",
        help="Do not write an execution record.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON.",
    )

    check_cmd = sub.add_parser(
        "check",
        help="Run only the denylist pre-filter.",
        description=(
            "Report denylist patterns matched by a script without running it.\n"
            "Passing this check is not a safety guarantee."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    _add_source_arguments(check_cmd)

    history_cmd = sub.add_parser(
        "history",
        help="Show recent execution records.",
        description="List recent execution records, newest first.",
        formatter_class=_HELP_FORMATTER,
    )
    history_cmd.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of records (default: 20).",
    )
    history_cmd.add_argument(
        "--session",
        help="Only show records owned by this session id.",
    )

    sub.add_parser(
        "tools",
        help="List registered tools.",
        description="Show the registered tools and their parameter schemas.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_policy(args: argparse.Namespace) -> SandboxPolicy:
    """Load the policy named by the CLI flags, or the bundled defaults.

    Example:
        ```python
        policy = build_policy(args)
        ```
    """
    if args.policy_file:
        return SandboxPolicy.from_file(args.policy_file)
    return SandboxPolicy()


def build_log(args: argparse.Namespace) -> ExecutionLog:
    """Open the execution log named by the CLI flags.

    Example:
        ```python
        log = build_log(args)
        ```
    """
    return ExecutionLog(create_db_engine(args.database_url))


def _read_source(args: argparse.Namespace, parser: argparse.ArgumentParser) -> str:
    """Return script text from --code, stdin, or a file path.

    Example:
        ```python
        code = _read_source(args, parser)
        ```
    """
    if args.code is not None:
        return args.code
    if args.source == "-":
        return sys.stdin.read()
    if args.source:
        path = Path(args.source)
        if not path.is_file():
            parser.error(f"Script not found: {args.source}")
        return path.read_text(encoding="utf-8")
    parser.error("Provide a script path, '-' for stdin, or --code")
    return ""


def _print_result(payload: dict[str, Any]) -> None:
    """Render one execution result as Rich panels.

    Example:
        ```python
        _print_result({"output": "hello", "error": None, "duration_ms": 12, "status": "success"})
        ```
    """
    status = str(payload["status"])
    style = _STATUS_STYLES.get(status, "bold")
    title = f"[{style}]{status}[/{style}] in {payload['duration_ms']} ms"
    _CONSOLE.print(Panel(Text(payload["output"] or ""), title=title, border_style="cyan"))
    if payload.get("error"):
        _CONSOLE.print(Panel(Text(payload["error"]), title="Error", border_style="red"))


def _print_matches(matches: list[str]) -> None:
    """Render matched denylist patterns in a rich table.

    Example:
        ```python
        _print_matches(["__import__"])
        ```
    """
    table = Table(title="Denylist Matches")
    table.add_column("#", style="cyan")
    table.add_column("Pattern", style="magenta", no_wrap=True)
    for index, pattern in enumerate(matches, start=1):
        table.add_row(str(index), pattern)
    _CONSOLE.print(table)


def _print_history(rows: list[dict[str, Any]]) -> None:
    """Render execution records in a rich table.

    Example:
        ```python
        _print_history([{"id": "ab12", "session_id": "default-session", "status": "success", "duration_ms": 3, "executed_at": "...", "code": "print(1)"}])
        ```
    """
    table = Table(title="Execution History")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Session", style="magenta", no_wrap=True)
    table.add_column("Status")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Executed At")
    table.add_column("Code")
    for row in rows:
        status = str(row["status"])
        code_line = str(row["code"]).strip().splitlines()[0] if str(row["code"]).strip() else ""
        table.add_row(
            str(row["id"])[:12],
            str(row["session_id"]),
            Text(status, style=_STATUS_STYLES.get(status, "")),
            str(row["duration_ms"]),
            str(row["executed_at"]),
            code_line[:60],
        )
    _CONSOLE.print(table)


def _print_tools(catalog: list[dict[str, Any]]) -> None:
    """Render registered tools in a rich table.

    Example:
        ```python
        _print_tools([{"name": "python_execution", "description": "...", "parameters": {}}])
        ```
    """
    table = Table(title="Registered Tools")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Parameters", style="magenta")
    for item in catalog:
        params = ", ".join(
            f"{name}{'*' if spec.get('required') else ''}"
            for name, spec in item["parameters"].items()
        )
        table.add_row(item["name"], item["description"], params)
    _CONSOLE.print(table)


def _run(args: argparse.Namespace, parser: argparse.ArgumentParser, policy: SandboxPolicy) -> int:
    """Handle the `run` subcommand.

    Example:
        ```python
        code = _run(args, parser, SandboxPolicy())
        ```
    """
    code = _read_source(args, parser)
    engine = LocalEngine(policy=policy)
    log = None if args.no_log else build_log(args)
    try:
        result = execute_code(
            code,
            engine=engine,
            timeout_seconds=args.timeout,
            capture_output=not args.no_capture,
            policy=policy,
            execution_log=log,
            session_id=args.session,
            metadata={"source": "cli"},
            gate=AdmissionGate.from_policy(policy),
        )
    except ValidationError as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {exc}", border_style="red"))
        return 2
    finally:
        if log is not None:
            log.close()

    payload = result.to_dict()
    if args.json:
        _CONSOLE.print_json(json.dumps(payload))
    else:
        _print_result(payload)
    return 0 if result.ok else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sse` CLI command handler.

    Example:
        ```python
        code = main(["run", "--code", "print('hello')"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    init_logger()
    policy = build_policy(args)

    if args.command == "run":
        return _run(args, parser, policy)
    if args.command == "check":
        matches = find_unsafe_patterns(_read_source(args, parser), policy.blocked_patterns)
        if not matches:
            _CONSOLE.print(Panel.fit("No denylist patterns matched.", style="bold green"))
            return 0
        _print_matches(matches)
        _CONSOLE.print(Panel.fit("Script would be rejected.", style="bold red"))
        return 1
    if args.command == "history":
        log = build_log(args)
        try:
            rows = log.recent(limit=args.limit, session_id=args.session)
        finally:
            log.close()
        if not rows:
            _CONSOLE.print(Panel.fit("No execution records.", style="bold yellow"))
            return 0
        _print_history(rows)
        return 0
    if args.command == "tools":
        registry = build_tool_registry(LocalEngine(policy=policy), policy=policy)
        _print_tools(registry.describe())
        return 0

    parser.error("Unhandled command")
    return 2
