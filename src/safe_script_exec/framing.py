from __future__ import annotations

import uuid

OUTPUT_START = "SSE_OUTPUT_START"
OUTPUT_END = "SSE_OUTPUT_END"
ERROR_START = "SSE_ERROR_START"
ERROR_END = "SSE_ERROR_END"

# Runs inside the child interpreter. Every wrapper name is prefixed `_sse_`
# and user code gets its own globals, so user code cannot rebind them.
_WRAPPER_TEMPLATE = '''\
import sys as _sse_sys
import traceback as _sse_traceback
from io import StringIO as _SseStringIO

_sse_source = {source}
_sse_stdout = _sse_sys.stdout
_sse_buffer = _SseStringIO()
_sse_exit_code = 0


def _sse_emit_output():
    _sse_stdout.write({output_start} + "\\n")
    _sse_stdout.write(_sse_buffer.getvalue())
    _sse_stdout.write("\\n" + {output_end} + "\\n")
    _sse_stdout.flush()


def _sse_emit_error(description):
    _sse_sys.stderr.write({error_start} + "\\n")
    _sse_sys.stderr.write(description)
    _sse_sys.stderr.write("\\n" + {error_end} + "\\n")
    _sse_traceback.print_exc()
    _sse_sys.stderr.flush()


_sse_sys.stdout = _sse_buffer
try:
    _sse_code = compile(_sse_source, "<user_code>", "exec")
    exec(_sse_code, {{"__name__": "__main__", "__builtins__": __builtins__}})
except SystemExit as _sse_exc:
    _sse_sys.stdout = _sse_stdout
    _sse_emit_output()
    if _sse_exc.code not in (None, 0):
        _sse_exit_code = _sse_exc.code if isinstance(_sse_exc.code, int) else 1
        _sse_emit_error("SystemExit: " + str(_sse_exc.code))
except BaseException as _sse_exc:
    _sse_sys.stdout = _sse_stdout
    _sse_emit_output()
    _sse_exit_code = 1
    _sse_emit_error(type(_sse_exc).__name__ + ": " + str(_sse_exc))
else:
    _sse_sys.stdout = _sse_stdout
    _sse_emit_output()
finally:
    _sse_sys.stdout = _sse_stdout

if _sse_exit_code:
    _sse_sys.exit(_sse_exit_code)
'''


def new_token() -> str:
    """Return a fresh per-run token used to make sentinels unique.

    Example:
        ```python
        token = new_token()
        ```
    """
    return uuid.uuid4().hex


def _marker(name: str, token: str) -> str:
    """Return the sentinel string for one marker name and run token.

    Example:
        ```python
        start = _marker(OUTPUT_START, "abc123")  # 'SSE_OUTPUT_START_abc123'
        ```
    """
    return f"{name}_{token}" if token else name


def wrap_source(code: str, token: str) -> str:
    """Return a script that runs `code` unmodified and frames its output.

    Standard output is buffered while user code runs and then written between
    the output sentinels. An uncaught exception, or a non-zero `SystemExit`,
    writes its description between the error sentinels on stderr followed by
    the traceback, and the script exits non-zero.

    Example:
        ```python
        script = wrap_source("print('hello')", new_token())
        ```
    """
    return _WRAPPER_TEMPLATE.format(
        source=repr(code),
        output_start=repr(_marker(OUTPUT_START, token)),
        output_end=repr(_marker(OUTPUT_END, token)),
        error_start=repr(_marker(ERROR_START, token)),
        error_end=repr(_marker(ERROR_END, token)),
    )


def _between(raw: str, start: str, end: str) -> str | None:
    """Return the text between the first `start` and the next `end`, or None.

    Example:
        ```python
        _between("a<x>b", "<", ">")  # 'x'
        ```
    """
    start_index = raw.find(start)
    if start_index == -1:
        return None
    end_index = raw.find(end, start_index + len(start))
    if end_index == -1:
        return None
    return raw[start_index + len(start) : end_index]


def extract_output(raw: str | None, token: str = "") -> str:
    """Extract framed output, falling back to the trimmed raw text.

    Example:
        ```python
        extract_output("noise\\nSSE_OUTPUT_START_t\\nhello\\n\\nSSE_OUTPUT_END_t\\n", "t")  # 'hello'
        ```
    """
    text = raw or ""
    segment = _between(text, _marker(OUTPUT_START, token), _marker(OUTPUT_END, token))
    if segment is None:
        return text.strip()
    return segment.strip()


def extract_error(raw: str | None, token: str = "") -> str | None:
    """Extract the framed error segment, falling back to trimmed raw text or None.

    Example:
        ```python
        extract_error("SSE_ERROR_START_t\\nZeroDivisionError: division by zero\\nSSE_ERROR_END_t\\n", "t")
        ```
    """
    text = raw or ""
    segment = _between(text, _marker(ERROR_START, token), _marker(ERROR_END, token))
    if segment is None:
        return text.strip() or None
    return segment.strip() or None
