"""JSON output helpers for the prompt-bundler CLI.

This module is the sole output mechanism for the CLI, which emits
response-v2 JSON envelopes only. Success envelopes go to stdout; error
envelopes go to stderr and the process exits with code 1.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Sequence

from prompt_bundler.cli.logging import generate_request_id, get_request_id, set_request_id
from prompt_bundler.core.responses import ToolResponse, error_response, success_response


def _ensure_request_id() -> str:
    request_id = get_request_id()
    if request_id:
        return request_id
    request_id = generate_request_id()
    set_request_id(request_id)
    return request_id


def emit(data: Any) -> None:
    """Emit minified JSON to stdout."""
    print(json.dumps(data, separators=(",", ":"), default=str))


def emit_response_error(response: ToolResponse) -> NoReturn:
    """Emit a prepared error envelope to stderr and exit with code 1."""
    response.meta.setdefault("request_id", _ensure_request_id())
    print(json.dumps(asdict(response), separators=(",", ":"), default=str), file=sys.stderr)
    sys.exit(1)


def emit_error(
    message: str,
    code: str = "INTERNAL_ERROR",
    *,
    error_type: str = "internal",
    remediation: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> NoReturn:
    """Emit error JSON to stderr and exit with code 1.

    Args:
        message: Human-readable error description.
        code: Error code in SCREAMING_SNAKE_CASE (e.g., VALIDATION_ERROR, NOT_FOUND).
        error_type: Error category for routing (validation, not_found, internal).
        remediation: Actionable guidance for resolving the error.
        details: Optional additional error context.

    Raises:
        SystemExit: Always exits with code 1.
    """
    response = error_response(
        message=message,
        error_code=code,
        error_type=error_type,
        remediation=remediation,
        details=details,
        request_id=_ensure_request_id(),
    )
    emit_response_error(response)


def emit_success(
    data: Any,
    *,
    warnings: Sequence[str] | None = None,
    telemetry: Mapping[str, Any] | None = None,
) -> None:
    """Emit success response envelope to stdout.

    Args:
        data: The command-specific payload.
        warnings: Non-fatal issues to surface in meta.warnings.
        telemetry: Timing/performance metadata.
    """
    if not isinstance(data, dict):
        data = {"result": data}
    response = success_response(
        data=data,
        warnings=warnings,
        telemetry=telemetry,
        request_id=_ensure_request_id(),
    )
    emit(asdict(response))
