"""Request-scoped logging for CLI commands.

Each command invocation runs under a request ID. Log records emitted
through ``CLILogger`` carry it in ``record.cli_context`` and the same ID is
stamped on the JSON envelope the command prints.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

__all__ = [
    "cli_command",
    "get_cli_logger",
    "CLILogContext",
]

T = TypeVar("T")

_request_id: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    return f"cli_{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    """Request ID of the running command, or "" outside one."""
    return _request_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


class CLILogContext:
    """Binds a request ID for the duration of a ``with`` block."""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self._token = None

    def __enter__(self) -> "CLILogContext":
        self._token = _request_id.set(self.request_id)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _request_id.reset(self._token)


class CLILogger:
    """Wraps a stdlib logger, adding the request ID and keyword fields to each record."""

    def __init__(self, name: str = "prompt_bundler.cli"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, fields: dict[str, Any]) -> None:
        self._logger.log(
            level, message, extra={"cli_context": {"request_id": get_request_id(), **fields}}
        )

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)


_cli_logger = CLILogger()


def get_cli_logger() -> CLILogger:
    return _cli_logger


def cli_command(
    command_name: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Run a command under a fresh request ID and log its duration.

    Args:
        command_name: Name used in log records (defaults to the function name).
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = command_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with CLILogContext():
                start = time.perf_counter()
                ok = False
                try:
                    result = func(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    _cli_logger.debug(
                        f"{name} finished",
                        command=name,
                        success=ok,
                        duration_ms=round((time.perf_counter() - start) * 1000, 2),
                    )

        return wrapper

    return decorator
