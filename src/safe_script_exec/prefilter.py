"""Static denylist check run before any interpreter process is spawned.

The denylist is a heuristic. Pattern matching on source text is easy to evade
(string concatenation, ``getattr`` tricks, ``importlib``), so acceptance here
says nothing about safety; isolation comes from the process sandbox applied by
the execution engine.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

from .errors import SafetyRejection
from .policy import DEFAULT_BLOCKED_PATTERNS


@lru_cache(maxsize=32)
def _compile(patterns: tuple[str, ...]) -> tuple[re.Pattern[str], ...]:
    """Compile and cache a denylist.

    Example:
        ```python
        compiled = _compile((r"eval\\s*\\(",))
        ```
    """
    return tuple(re.compile(pattern) for pattern in patterns)


def find_unsafe_patterns(code: str, patterns: Iterable[str] | None = None) -> list[str]:
    """Return the denylist patterns that match `code`, in denylist order.

    Example:
        ```python
        matches = find_unsafe_patterns("import os; os.system('ls')")
        # ['import\\\\s+os']
        ```
    """
    denylist = tuple(DEFAULT_BLOCKED_PATTERNS if patterns is None else patterns)
    return [compiled.pattern for compiled in _compile(denylist) if compiled.search(code)]


def check_source(code: str, patterns: Iterable[str] | None = None) -> None:
    """Raise `SafetyRejection` if `code` matches any denylist pattern.

    Example:
        ```python
        check_source("print('hello')")
        ```
    """
    matches = find_unsafe_patterns(code, patterns)
    if matches:
        raise SafetyRejection(matches)
