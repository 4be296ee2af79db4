"""
Standard response envelopes for prompt-bundler commands.

Response Schema Contract
========================

Every command emits the same structure:

    {
        "success": bool,       # Required: operation success/failure
        "data": {...},         # Required: primary payload (empty dict on error)
        "error": str | null,   # Required: error message or null on success
        "meta": {              # Required: response metadata
            "version": "response-v2",
            "request_id": "req_abc123"?,
            "warnings": ["..."]?,
            "telemetry": { ... }?
        }
    }

Key Principle:
    - `success=True` means the command executed correctly, including a bundle
      that is over budget (reported through `data` and `meta.warnings`).
    - `success=False` means the command failed; `data` carries `error_code`,
      `error_type` and, where possible, `remediation`.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from prompt_bundler.core.errors import BundlerError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes (SCREAMING_SNAKE_CASE)."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"

    # Bundle errors
    CORE_MISSING = "CORE_MISSING"
    CATEGORY_ORDER_VIOLATION = "CATEGORY_ORDER_VIOLATION"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorType(str, Enum):
    """Error categories for routing and client-side handling."""

    VALIDATION = "validation"  # Fix input, no retry
    NOT_FOUND = "not_found"  # No retry
    INTERNAL = "internal"  # Invariant broken, report


@dataclass
class ToolResponse:
    """
    Standard response structure for prompt-bundler commands.

    Attributes:
        success: Whether the operation completed successfully
        data: The primary payload
        error: Error message if success is False, None otherwise
        meta: Response metadata including version identifier
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=lambda: {"version": "response-v2"})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_meta(
    *,
    request_id: Optional[str] = None,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a metadata payload that always includes the response version."""
    meta: Dict[str, Any] = {"version": "response-v2"}
    if request_id:
        meta["request_id"] = request_id
    if warnings:
        meta["warnings"] = list(warnings)
    if telemetry:
        meta["telemetry"] = dict(telemetry)
    return meta


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a standardized success response.

    Args:
        data: The command payload.
        warnings: Non-fatal issues to surface in ``meta.warnings``.
        telemetry: Timing/performance metadata.
        request_id: Correlation identifier.
    """
    meta_payload = _build_meta(request_id=request_id, warnings=warnings, telemetry=telemetry)
    return ToolResponse(success=True, data=dict(data or {}), error=None, meta=meta_payload)


def _enum_value(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else value


def error_response(
    message: str,
    *,
    error_code: Union[ErrorCode, str] = ErrorCode.INTERNAL_ERROR,
    error_type: Union[ErrorType, str] = ErrorType.INTERNAL,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a standardized error response.

    ``data`` carries ``error_code`` and ``error_type`` always, and
    ``remediation`` and ``details`` when given.

    Example:
        >>> error_response(
        ...     "Turn packet is missing 'core'",
        ...     error_code=ErrorCode.VALIDATION_ERROR,
        ...     error_type=ErrorType.VALIDATION,
        ... )
    """
    payload: Dict[str, Any] = {
        "error_code": _enum_value(error_code),
        "error_type": _enum_value(error_type),
    }
    if remediation is not None:
        payload["remediation"] = remediation
    if details:
        payload["details"] = dict(details)

    return ToolResponse(
        success=False, data=payload, error=message, meta=_build_meta(request_id=request_id)
    )


# ---------------------------------------------------------------------------
# Specialized Error Helpers
# ---------------------------------------------------------------------------


def validation_error(
    message: str,
    *,
    field: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    remediation: Optional[str] = None,
) -> ToolResponse:
    """Create a validation error response.

    Example:
        >>> validation_error("max_tokens must be positive", field="max_tokens")
    """
    error_details = dict(details) if details else {}
    if field and "field" not in error_details:
        error_details["field"] = field

    return error_response(
        message,
        error_code=ErrorCode.VALIDATION_ERROR,
        error_type=ErrorType.VALIDATION,
        details=error_details if error_details else None,
        remediation=remediation,
    )


def not_found_error(resource_type: str, resource_id: str) -> ToolResponse:
    """Create a not found error response.

    Example:
        >>> not_found_error("Turn packet", "packet.json")
    """
    return error_response(
        f"{resource_type} '{resource_id}' not found",
        error_code=ErrorCode.NOT_FOUND,
        error_type=ErrorType.NOT_FOUND,
        remediation=f"Verify the {resource_type.lower()} path exists and is readable.",
    )


def bundler_error_response(exc: BundlerError) -> ToolResponse:
    """Map a BundlerError to an error envelope, keeping its extra fields."""
    payload = exc.to_dict()
    message = payload.pop("message")
    remediation = payload.pop("remediation", None)
    error_code = payload.pop("error_code")
    payload.pop("error_type", None)
    error_type = ErrorType.VALIDATION if error_code == ErrorCode.CORE_MISSING.value else ErrorType.INTERNAL
    return error_response(
        message,
        error_code=error_code,
        error_type=error_type,
        remediation=remediation,
        details=payload or None,
    )


def sanitize_error_message(exc: Exception, context: str = "") -> str:
    """Convert an exception to a user-safe message without internal details."""
    if context:
        logger.debug(f"Error in {context}: {exc}", exc_info=True)
    else:
        logger.debug(f"Error: {exc}", exc_info=True)

    if isinstance(exc, FileNotFoundError):
        return "Required file or resource not found"
    if isinstance(exc, json.JSONDecodeError):
        return "Invalid JSON format"
    if isinstance(exc, UnicodeDecodeError):
        return "File is not valid UTF-8 text"
    if isinstance(exc, PermissionError):
        return "Permission denied for requested operation"
    if isinstance(exc, OSError):
        return "System I/O error occurred"
    return f"An internal error occurred ({type(exc).__name__})"
