"""Extractive compaction of oversized text blocks.

Reduces a text block to an extractive summary within a token ceiling,
preserving bulleted or numbered key points. No rewriting happens here:
output is assembled from the input's own lines, sentences and words.

Key Components:
    - extract_key_points(): Bullets, else numbered lines, else first sentences
    - compact(): Bounded-budget extractive compaction returning a SliceSummary
    - SliceSummary: Compacted content with key points and metadata
    - create_inline_summaries(): Compact world/adventure slices for inlining

Ceiling guarantee:
    For ``compact(text, n)`` the returned ``token_count`` is at most ``n``,
    except when the very first word of the text is itself larger than ``n``.
    In that case the first word is returned alone and
    ``metadata["exceeded_ceiling"]`` is True.

Usage:
    from prompt_bundler.core.compaction import compact

    summary = compact(long_text, 200, name="world.canon")
    print(summary.token_count, summary.key_points)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

from prompt_bundler.core.token_management import TokenCounter, make_estimator

logger = logging.getLogger(__name__)

# Maximum key points extracted from a block
MAX_KEY_POINTS = 5

# Sentences used as key points when a block has no list items
FALLBACK_SENTENCE_POINTS = 3

# Filtered sentences are appended until the summary reaches this share of the ceiling
SUMMARY_FILL_RATIO = 0.8

# Sentences at or below this length are not appended to summaries
MIN_SENTENCE_CHARS = 20

# Sentences carrying these markers are never appended to summaries
EXCLUDED_MARKERS = ("note:", "warning:", "important:")

ELLIPSIS = "..."

_BULLET_PATTERN = re.compile(r"^\s*[-*•]\s+(\S.*?)\s*$")
_NUMBERED_PATTERN = re.compile(r"^\s*\d+[.)]\s+(\S.*?)\s*$")
_SENTENCE_SPLIT = re.compile(r"[.!?]")


def split_sentences(text: str) -> list[str]:
    """Split text on ``.!?`` and keep non-empty stripped pieces."""
    return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def extract_key_points(text: str, limit: int = MAX_KEY_POINTS) -> list[str]:
    """Extract key points from a text block.

    Looks for bulleted lines first (``-``, ``*``, ``•``), then numbered
    lines (``1.`` / ``1)``), then falls back to the first three sentences.

    Args:
        text: Text block
        limit: Maximum number of key points

    Returns:
        Up to ``limit`` key points, in document order
    """
    lines = text.splitlines()

    bullets = [m.group(1) for m in map(_BULLET_PATTERN.match, lines) if m]
    if bullets:
        return bullets[:limit]

    numbered = [m.group(1) for m in map(_NUMBERED_PATTERN.match, lines) if m]
    if numbered:
        return numbered[:limit]

    return split_sentences(text)[: min(FALLBACK_SENTENCE_POINTS, limit)]


def _has_excluded_marker(sentence: str) -> bool:
    lowered = sentence.lower()
    return any(marker in lowered for marker in EXCLUDED_MARKERS)


def _finish(text: str) -> str:
    return text if text.endswith(".") else text + ELLIPSIS


@dataclass
class SliceSummary:
    """Result of compacting one text block.

    Attributes:
        name: Identifier of the compacted slice
        content: Compacted text
        token_count: Estimated tokens of ``content``
        key_points: Extracted key points
        metadata: strategy, original_tokens, compression_ratio,
            exceeded_ceiling, max_tokens
    """

    name: str
    content: str
    token_count: int
    key_points: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def exceeded_ceiling(self) -> bool:
        return bool(self.metadata.get("exceeded_ceiling", False))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "content": self.content,
            "token_count": self.token_count,
            "key_points": list(self.key_points),
            "metadata": dict(self.metadata),
        }


def _build_extractive_summary(
    text: str,
    key_points: Sequence[str],
    max_tokens: int,
    estimate,
) -> str:
    summary = ". ".join(key_points)
    threshold = SUMMARY_FILL_RATIO * max_tokens
    used = set(key_points)

    for sentence in split_sentences(text):
        if len(sentence) <= MIN_SENTENCE_CHARS or sentence in used:
            continue
        if _has_excluded_marker(sentence):
            continue
        candidate = f"{summary}. {sentence}" if summary else sentence
        if estimate(candidate) > threshold:
            break
        summary = candidate
        used.add(sentence)

    return summary


def _truncate_words(text: str, max_tokens: int, estimate) -> tuple[str, bool]:
    """Accumulate words until the next one would break the ceiling.

    Returns:
        Tuple of (content, exceeded_ceiling)
    """
    words = text.split()
    if not words:
        return "", False

    accepted = ""
    for word in words:
        candidate = f"{accepted} {word}" if accepted else word
        if estimate(_finish(candidate)) > max_tokens:
            break
        accepted = candidate

    if accepted:
        return _finish(accepted), False

    # First word alone is over the ceiling (or only fits without the ellipsis)
    first = words[0]
    return first, estimate(first) > max_tokens


def compact(
    text: Optional[str],
    max_tokens: int,
    *,
    name: str = "slice",
    preserve_key_points: bool = True,
    counter: Union[TokenCounter, str, None] = None,
) -> SliceSummary:
    """Compact a text block to fit within ``max_tokens``.

    1. Text that already fits is returned unchanged.
    2. Otherwise key points are joined with ``". "`` and filtered sentences
       (longer than 20 chars, no ``note:``/``warning:``/``important:``) are
       appended while the estimate stays within 80% of the ceiling.
    3. If that is still too large, words are accumulated until the next
       one would exceed the ceiling and ``"..."`` is appended unless the
       result ends with a period.

    Never raises; empty or blank text yields an empty summary.

    Args:
        text: Text block to compact
        max_tokens: Token ceiling (negative values are treated as 0)
        name: Identifier recorded on the result
        preserve_key_points: Extract key points and lead the summary with them
        counter: Optional token counter callable or registered name

    Returns:
        SliceSummary with content, token_count, key_points and metadata
    """
    estimate = make_estimator(counter)
    max_tokens = max(0, max_tokens)

    if not text or not text.strip():
        return SliceSummary(
            name=name,
            content="",
            token_count=0,
            key_points=[],
            metadata={
                "strategy": "unchanged",
                "original_tokens": 0,
                "compression_ratio": 1.0,
                "exceeded_ceiling": False,
                "max_tokens": max_tokens,
            },
        )

    original_tokens = estimate(text)
    key_points = extract_key_points(text) if preserve_key_points else []

    if original_tokens <= max_tokens:
        content = text
        strategy = "unchanged"
        exceeded = False
    else:
        content = _build_extractive_summary(text, key_points, max_tokens, estimate)
        strategy = "extractive"
        exceeded = False
        if not content or estimate(content) > max_tokens:
            content, exceeded = _truncate_words(content or text, max_tokens, estimate)
            strategy = "word_truncation"
        logger.debug(
            f"Compacted '{name}' from {original_tokens} to {estimate(content)} tokens "
            f"({strategy})"
        )

    token_count = estimate(content)
    return SliceSummary(
        name=name,
        content=content,
        token_count=token_count,
        key_points=key_points,
        metadata={
            "strategy": strategy,
            "original_tokens": original_tokens,
            "compression_ratio": round(token_count / original_tokens, 4) if original_tokens else 1.0,
            "exceeded_ceiling": exceeded,
            "max_tokens": max_tokens,
        },
    )


@dataclass
class InlineSummaries:
    """Compacted world and adventure slices, in input order."""

    world: list[str] = field(default_factory=list)
    adventure: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"world": {"inline": list(self.world)}, "adventure": {"inline": list(self.adventure)}}


def create_inline_summaries(
    world_slices: Sequence[str],
    adventure_slices: Sequence[str],
    max_tokens: int = 50,
    *,
    counter: Union[TokenCounter, str, None] = None,
) -> InlineSummaries:
    """Compact each world and adventure slice for inline use.

    Args:
        world_slices: World slice texts
        adventure_slices: Adventure slice texts
        max_tokens: Ceiling applied to each slice
        counter: Optional token counter callable or registered name

    Returns:
        InlineSummaries with one compacted string per non-blank slice
    """
    world = [
        compact(text, max_tokens, name=f"world-{i}", counter=counter).content
        for i, text in enumerate(world_slices)
        if text and text.strip()
    ]
    adventure = [
        compact(text, max_tokens, name=f"adventure-{i}", counter=counter).content
        for i, text in enumerate(adventure_slices)
        if text and text.strip()
    ]
    return InlineSummaries(world=world, adventure=adventure)
