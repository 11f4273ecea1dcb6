from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Any

from loguru import logger as _logger

_configured = False
_init_lock = threading.Lock()


def _get_env_level(default: str = "INFO") -> str:
    """Return the log level from `SSE_LOG_LEVEL`.

    Example:
        ```python
        level = _get_env_level()
        ```
    """
    return os.getenv("SSE_LOG_LEVEL", default).upper()


def init_logger() -> None:
    """Replace loguru sinks with a console sink and an optional JSON file sink. Idempotent.

    Meant for application entry points such as the `sse` CLI; importing the
    library never touches sinks.

    The file sink is enabled by pointing `SSE_LOG_DIR` at a directory.

    Example:
        ```python
        init_logger()
        ```
    """
    global _configured
    if _configured:
        return

    with _init_lock:
        if _configured:
            return

        level = _get_env_level()
        _logger.remove()
        _logger.configure(extra={"component": "-"})
        _logger.add(
            sys.stderr,
            colorize=True,
            backtrace=False,
            diagnose=False,
            level=level,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[component]}</cyan> | "
                "<level>{message}</level>"
            ),
        )

        log_dir = os.getenv("SSE_LOG_DIR")
        if log_dir:
            path = Path(log_dir).expanduser()
            path.mkdir(parents=True, exist_ok=True)
            _logger.add(
                path / "sse_{time:YYYYMMDD}.jsonl",
                rotation="10 MB",
                retention="14 days",
                level=level,
                serialize=True,
            )

        _configured = True


def get_logger(component: str) -> Any:
    """Return the shared loguru logger bound to a component name.

    Sinks are left alone; applications call `init_logger` once at startup.

    Example:
        ```python
        logger = get_logger(__name__)
        logger.info("ready")
        ```
    """
    return _logger.bind(component=component)


__all__ = ["get_logger", "init_logger"]
