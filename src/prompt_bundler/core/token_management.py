"""Token estimation and budget checks for prompt bundles.

Provides the default byte-based token estimate, pluggable vendor counters,
and preflight/output-budget checks used by callers around the model call.

Key Components:
    - estimate_tokens(): ceil(utf-8 bytes / 4) or a pluggable counter
    - estimate_sections_tokens(): Sum of per-section estimates
    - register_token_counter(): Named counter registry for vendor tokenizers
    - tiktoken_counter(): Counter backed by a tiktoken encoding
    - PreflightResult / preflight_count(): Size check before dispatch
    - OutputBudgetResult / check_output_budget(): Accounting for the token
      count reported back by the model provider

Usage:
    from prompt_bundler.core.token_management import (
        estimate_tokens,
        register_token_counter,
        tiktoken_counter,
    )

    tokens = estimate_tokens("Hello, world!")          # 4

    register_token_counter("openai", tiktoken_counter("cl100k_base"))
    tokens = estimate_tokens(text, counter="openai")
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

logger = logging.getLogger(__name__)

# Bytes per token for the default heuristic
BYTES_PER_TOKEN = 4

# A counter maps text to a token count
TokenCounter = Callable[[str], int]

# Named counters registered at start-up (e.g. vendor tokenizers)
_TOKEN_COUNTERS: dict[str, TokenCounter] = {}


def register_token_counter(name: str, counter: TokenCounter) -> None:
    """Register a named token counter.

    Args:
        name: Counter identifier (e.g. "openai", "claude")
        counter: Function that takes text and returns a token count

    Example:
        register_token_counter("openai", tiktoken_counter("o200k_base"))
    """
    _TOKEN_COUNTERS[name.lower()] = counter


def unregister_token_counter(name: str) -> bool:
    """Remove a named counter. Returns True if one was registered."""
    return _TOKEN_COUNTERS.pop(name.lower(), None) is not None


def get_token_counter(name: str) -> Optional[TokenCounter]:
    """Look up a registered counter by name."""
    return _TOKEN_COUNTERS.get(name.lower())


def tiktoken_counter(encoding_name: str = "cl100k_base") -> TokenCounter:
    """Build a counter backed by a tiktoken encoding.

    Args:
        encoding_name: tiktoken encoding (e.g. "cl100k_base", "o200k_base")

    Returns:
        Counter returning the exact encoded length for that encoding
    """
    import tiktoken

    encoding = tiktoken.get_encoding(encoding_name)

    def count(text: str) -> int:
        return len(encoding.encode(text))

    return count


def _estimate_heuristic(text: str) -> int:
    """ceil(utf-8 byte length / 4)."""
    return math.ceil(len(text.encode("utf-8", errors="replace")) / BYTES_PER_TOKEN)


def _resolve_counter(counter: Union[TokenCounter, str, None]) -> Optional[TokenCounter]:
    if counter is None:
        return None
    if isinstance(counter, str):
        resolved = get_token_counter(counter)
        if resolved is None:
            logger.debug(f"Unknown token counter '{counter}', using byte heuristic")
        return resolved
    return counter


def estimate_tokens(text: Optional[str], counter: Union[TokenCounter, str, None] = None) -> int:
    """Estimate the token count for text.

    Uses the pluggable counter when given (callable or registered name),
    otherwise ``ceil(len(utf8) / 4)``. Never raises: a failing counter
    falls back to the heuristic, and empty text yields 0.

    Args:
        text: Text to estimate
        counter: Optional counter callable or registered counter name

    Returns:
        Estimated token count (>= 0)
    """
    if not text:
        return 0

    resolved = _resolve_counter(counter)
    if resolved is not None:
        try:
            return max(0, int(resolved(text)))
        except Exception as e:
            logger.debug(f"Token counter failed, using byte heuristic: {e}")

    return _estimate_heuristic(text)


def estimate_sections_tokens(
    sections: Iterable[Any],
    counter: Union[TokenCounter, str, None] = None,
) -> int:
    """Sum per-section token estimates.

    Args:
        sections: Objects with a ``text`` attribute
        counter: Optional counter callable or registered counter name

    Returns:
        Total estimated tokens
    """
    return sum(estimate_tokens(section.text, counter) for section in sections)


def make_estimator(counter: Union[TokenCounter, str, None] = None) -> Callable[[str], int]:
    """Bind a counter into a single-argument estimator."""
    resolved = _resolve_counter(counter)

    def estimate(text: str) -> int:
        return estimate_tokens(text, resolved)

    return estimate


# =============================================================================
# Preflight Validation
# =============================================================================


@dataclass(frozen=True)
class PreflightResult:
    """Result of checking an estimate against a token ceiling.

    Attributes:
        valid: Whether the estimate fits within max_tokens
        estimated_tokens: Estimated token count
        max_tokens: Token ceiling checked against
        overflow_tokens: Tokens over the ceiling, 0 when valid
        warn: Whether usage reached the warn threshold
    """

    valid: bool
    estimated_tokens: int
    max_tokens: int
    overflow_tokens: int
    warn: bool = False

    @property
    def usage_fraction(self) -> float:
        if self.max_tokens <= 0:
            return 1.0 if self.estimated_tokens > 0 else 0.0
        return self.estimated_tokens / self.max_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "estimated_tokens": self.estimated_tokens,
            "max_tokens": self.max_tokens,
            "overflow_tokens": self.overflow_tokens,
            "warn": self.warn,
            "usage_fraction": round(self.usage_fraction, 4),
        }


def preflight_count(
    estimated_tokens: int,
    max_tokens: int,
    *,
    warn_pct: float = 0.9,
) -> PreflightResult:
    """Check an estimate against a ceiling and the warn threshold.

    Args:
        estimated_tokens: Estimated tokens for the payload
        max_tokens: Token ceiling
        warn_pct: Fraction of max_tokens at which to warn

    Returns:
        PreflightResult with validity, overflow and warn flag
    """
    if max_tokens < 0:
        raise ValueError(f"max_tokens must be non-negative, got {max_tokens}")
    if not 0.0 < warn_pct <= 1.0:
        raise ValueError(f"warn_pct must be in (0.0, 1.0], got {warn_pct}")

    valid = estimated_tokens <= max_tokens
    overflow = 0 if valid else estimated_tokens - max_tokens
    if max_tokens > 0:
        warn = estimated_tokens / max_tokens >= warn_pct
    else:
        warn = estimated_tokens > 0

    logger.debug(
        f"Preflight {'passed' if valid else 'failed'}: "
        f"{estimated_tokens}/{max_tokens} tokens"
    )

    return PreflightResult(
        valid=valid,
        estimated_tokens=estimated_tokens,
        max_tokens=max_tokens,
        overflow_tokens=overflow,
        warn=warn,
    )


@dataclass(frozen=True)
class OutputBudgetResult:
    """Accounting result for the output token count reported by the model."""

    within_budget: bool
    estimated_tokens: int
    max_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "within_budget": self.within_budget,
            "estimated_tokens": self.estimated_tokens,
            "max_tokens": self.max_tokens,
        }


def check_output_budget(reported_tokens: int, max_output_tokens: int) -> OutputBudgetResult:
    """Compare the output token count reported by the model provider to the cap.

    Args:
        reported_tokens: Output tokens reported after the model call
        max_output_tokens: Configured output ceiling

    Returns:
        OutputBudgetResult
    """
    if reported_tokens < 0:
        raise ValueError(f"reported_tokens must be non-negative, got {reported_tokens}")
    within = reported_tokens <= max_output_tokens
    if not within:
        logger.warning(
            f"Model output exceeded budget: {reported_tokens} > {max_output_tokens} tokens"
        )
    return OutputBudgetResult(
        within_budget=within,
        estimated_tokens=reported_tokens,
        max_tokens=max_output_tokens,
    )
