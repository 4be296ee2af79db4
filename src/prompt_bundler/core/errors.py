"""Exceptions raised by the bundle core.

Only two conditions propagate as errors: a request with no CORE content and
a broken category ordering invariant. Budget exhaustion is reported through
warnings instead.
"""

from __future__ import annotations

from typing import Any, Optional


class BundlerError(Exception):
    """Base exception for prompt bundler errors.

    Attributes:
        code: Machine-readable error code (SCREAMING_SNAKE_CASE)
        remediation: Suggested fix for callers
    """

    code = "BUNDLER_ERROR"

    def __init__(self, message: str, *, remediation: Optional[str] = None):
        self.remediation = remediation
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error_type": self.code.lower(),
            "error_code": self.code,
            "message": str(self),
            "remediation": self.remediation,
        }


class MissingCoreCategoryError(BundlerError):
    """Raised when no provider supplied any CORE section."""

    code = "CORE_MISSING"

    def __init__(self, provider_count: int):
        self.provider_count = provider_count
        super().__init__(
            f"No CORE section supplied by {provider_count} provider(s)",
            remediation="Register a provider for the CORE category; it is mandatory.",
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["provider_count"] = self.provider_count
        return data


class CategoryOrderError(BundlerError):
    """Raised when a section sequence is not in non-decreasing category order."""

    code = "CATEGORY_ORDER_VIOLATION"

    def __init__(self, index: int, previous: str, current: str):
        self.index = index
        self.previous = previous
        self.current = current
        super().__init__(
            f"Category order broken at index {index}: {current} follows {previous}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"index": self.index, "previous": self.previous, "current": self.current})
        return data
