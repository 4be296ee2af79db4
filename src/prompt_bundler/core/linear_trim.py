"""Generic token-budget trim over labeled linear sections.

Works on any dataclass section carrying ``key``, ``text`` and an optional
``slot`` and ``category`` (``Section`` and ``LinearSection`` both qualify).
When a section has no category it is derived from its key prefix.

Key Components:
    - LinearSection: Minimal labeled section for callers outside the
      fixed game categories
    - BudgetResult: Trimmed sections, token totals, trim records, warnings
    - apply_budget(): Trim sections in precedence order until they fit
    - find_safe_trim_position(): Cut point avoiding code fences and
      mid-line cuts

Trim order (first trimmed to last):
    INPUT, STATE, NPCS, SCENARIO, WORLD, MODULES, RULESET, CORE,
    then slot priority ascending, then non-must_keep first, then key.

Each section is cut just enough to cover the remaining excess. A section
that is not must_keep is removed outright once it would have to shrink to
nothing; a must_keep section is never cut below its ``min_chars``. A
never_remove section always keeps its leading header or first line.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence, Union

from prompt_bundler.core.models import (
    BudgetWarning,
    Category,
    Slot,
    TrimRecord,
    category_for_key,
)
from prompt_bundler.core.token_management import (
    BYTES_PER_TOKEN,
    TokenCounter,
    make_estimator,
)

logger = logging.getLogger(__name__)

TRIM_MARKER = "… [[trimmed]]"

# Sum of min_chars may not exceed this share of the budget (in chars)
MIN_CHARS_GUARDRAIL_RATIO = 0.75

# Never-remove sections without a newline keep at least this many chars
LEADING_FLOOR_CHARS = 64

# Sections above this many tokens get a non-blocking warning when trimming
SOFT_BUDGET_PER_SLOT_TOKENS = 2000

# Ascending: categories earlier in this tuple are trimmed first
TRIM_PRECEDENCE: tuple[Category, ...] = (
    Category.INPUT,
    Category.STATE,
    Category.NPCS,
    Category.SCENARIO,
    Category.WORLD,
    Category.MODULES,
    Category.RULESET,
    Category.CORE,
)

_TRIM_RANK = {category: rank for rank, category in enumerate(TRIM_PRECEDENCE)}

_FENCE = "```"
_HEADER_PATTERN = re.compile(r"^(#+ .+?\n)")


@dataclass(frozen=True)
class LinearSection:
    """Labeled section without a fixed category."""

    key: str
    text: str
    slot: Optional[Slot] = None
    category: Optional[Category] = None
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "text": self.text}
        if self.label:
            data["label"] = self.label
        if self.category is not None:
            data["category"] = Category(self.category).name
        if self.slot is not None:
            data["slot"] = {
                "name": self.slot.name,
                "must_keep": self.slot.must_keep,
                "min_chars": self.slot.min_chars,
                "priority": self.slot.priority,
            }
        return data


@dataclass
class BudgetResult:
    """Outcome of ``apply_budget``.

    Attributes:
        sections: Surviving sections in input order
        total_tokens_before: Sum of section estimates before trimming
        total_tokens_after: Sum of section estimates after trimming
        trims: One record per cut or removal
        warnings: Guardrail, soft-budget and fallback warnings
        max_tokens: Budget the sections were fitted to
        removed_keys: Keys of sections removed entirely
    """

    sections: list[Any]
    total_tokens_before: int
    total_tokens_after: int
    trims: list[TrimRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    max_tokens: int = 0
    removed_keys: list[str] = field(default_factory=list)

    @property
    def within_budget(self) -> bool:
        return self.total_tokens_after <= self.max_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "sections": [s.to_dict() for s in self.sections],
            "total_tokens_before": self.total_tokens_before,
            "total_tokens_after": self.total_tokens_after,
            "trims": [t.to_dict() for t in self.trims],
            "warnings": list(self.warnings),
            "within_budget": self.within_budget,
        }


# =============================================================================
# Section accessors
# =============================================================================


def _category(section: Any) -> Category:
    category = getattr(section, "category", None)
    if category is None:
        return category_for_key(section.key)
    return Category(category)


def _must_keep(section: Any) -> bool:
    slot = getattr(section, "slot", None)
    return bool(slot and slot.must_keep)


def _min_chars(section: Any) -> int:
    slot = getattr(section, "slot", None)
    return (slot.min_chars or 0) if slot else 0


def _leading_floor(text: str) -> int:
    """Chars a never-remove section keeps: its header or first line."""
    header = _HEADER_PATTERN.match(text)
    if header:
        return len(header.group(1))
    newline = text.find("\n")
    if 0 < newline < len(text) - 1:
        return newline + 1
    return min(len(text), LEADING_FLOOR_CHARS)


def _priority(section: Any) -> int:
    slot = getattr(section, "slot", None)
    return (slot.priority or 0) if slot else 0


def trim_order_key(section: Any) -> tuple[int, int, bool, str]:
    """Sort key giving the order in which sections are trimmed."""
    return (
        _TRIM_RANK[_category(section)],
        _priority(section),
        _must_keep(section),
        section.key,
    )


# =============================================================================
# Cut positions
# =============================================================================


def _last_newline(text: str, max_pos: int) -> int:
    last = text.rfind("\n", 0, max_pos)
    return last if last > 0 else max_pos


def find_safe_trim_position(text: str, max_chars: int) -> int:
    """Find a cut position at or before ``max_chars``.

    Inside an unterminated code fence the cut moves before the opening
    fence; otherwise it backs off to the last newline.
    """
    before = text[:max_chars]
    if before.count(_FENCE) % 2 == 1:
        last_fence = before.rfind(_FENCE)
        if last_fence > 0:
            return _last_newline(text, last_fence)
    return _last_newline(text, max_chars)


def _cut(text: str, limit: int, floor: int) -> str:
    position = find_safe_trim_position(text, limit)
    if position < floor:
        position = limit
    return text[:position] + TRIM_MARKER


def _fit_text(text: str, target_tokens: int, floor: int, estimate: Callable[[str], int]) -> str:
    """Largest cut of ``text`` whose estimate is within ``target_tokens``.

    Bisects over the cut length in ``[floor, len(text))``. When nothing
    fits, the cut lands on ``floor``.
    """
    lo, hi = floor, len(text) - 1
    best: Optional[str] = None
    while lo <= hi:
        mid = (lo + hi) // 2
        candidate = _cut(text, mid, floor)
        if estimate(candidate) <= target_tokens:
            best = candidate
            lo = mid + 1
        else:
            hi = mid - 1
    return best if best is not None else _cut(text, floor, floor)


# =============================================================================
# Budget application
# =============================================================================


def apply_budget(
    linear_sections: Sequence[Any],
    max_tokens: int,
    *,
    counter: Union[TokenCounter, str, None] = None,
    protected: frozenset[Category] = frozenset(),
    never_remove: frozenset[Category] = frozenset(),
    allow_fallback: bool = True,
    soft_budget_per_slot_tokens: int = SOFT_BUDGET_PER_SLOT_TOKENS,
    min_chars_guardrail_ratio: float = MIN_CHARS_GUARDRAIL_RATIO,
) -> BudgetResult:
    """Trim linear sections until their summed estimate fits ``max_tokens``.

    Args:
        linear_sections: Dataclass sections with key, text and optional slot/category
        max_tokens: Token budget
        counter: Optional token counter callable or registered name
        protected: Categories left untouched
        never_remove: Categories that may be cut but never removed; their
            sections keep at least a leading header or first line
        allow_fallback: Uniformly shave every unprotected section (keeping a
            leading markdown header) if precedence trimming is not enough
        soft_budget_per_slot_tokens: Per-section size that triggers a warning
        min_chars_guardrail_ratio: Share of the budget min_chars may claim

    Returns:
        BudgetResult; under budget the input comes back unchanged with no
        trims and no warnings
    """
    estimate = make_estimator(counter)
    max_tokens = max(0, max_tokens)

    texts = [section.text for section in linear_sections]
    tokens = [estimate(text) for text in texts]
    total_before = sum(tokens)

    if total_before <= max_tokens:
        return BudgetResult(
            sections=list(linear_sections),
            total_tokens_before=total_before,
            total_tokens_after=total_before,
            max_tokens=max_tokens,
        )

    warnings: list[str] = []
    trims: list[TrimRecord] = []

    for section, count in zip(linear_sections, tokens):
        if count > soft_budget_per_slot_tokens:
            warnings.append(
                f'Slot "{section.key}" exceeds soft budget '
                f"({count} > {soft_budget_per_slot_tokens} tokens). "
                "Consider shortening this slot."
            )

    floors = [_min_chars(section) for section in linear_sections]
    total_min_chars = sum(floors)
    max_min_chars = math.floor(max_tokens * min_chars_guardrail_ratio * BYTES_PER_TOKEN)
    if total_min_chars > max_min_chars:
        warnings.append(
            f"min_chars sum ({total_min_chars}) exceeds guardrail ({max_min_chars}), "
            "reducing proportionally"
        )
        ratio = max_min_chars / total_min_chars
        floors = [math.floor(floor * ratio) for floor in floors]

    removed: set[int] = set()
    current = total_before
    order = sorted(range(len(linear_sections)), key=lambda i: trim_order_key(linear_sections[i]))

    for i in order:
        excess = current - max_tokens
        if excess <= 0:
            break
        section = linear_sections[i]
        category = _category(section)
        if category in protected:
            continue

        must_keep = _must_keep(section)
        target = tokens[i] - excess

        if target <= 0 and not must_keep and category not in never_remove:
            trims.append(TrimRecord(section.key, len(texts[i]), tokens[i]))
            current -= tokens[i]
            removed.add(i)
            logger.debug(f"Removed {section.key} ({tokens[i]} tokens)")
            continue

        floor = floors[i] if must_keep else 0
        if category in never_remove:
            floor = max(floor, _leading_floor(texts[i]))
        if floor >= len(texts[i]):
            continue
        new_text = _fit_text(texts[i], max(0, target), floor, estimate)
        new_tokens = estimate(new_text)
        if new_tokens >= tokens[i]:
            continue

        trims.append(
            TrimRecord(section.key, max(0, len(texts[i]) - len(new_text)), tokens[i] - new_tokens)
        )
        logger.debug(f"Trimmed {section.key} from {tokens[i]} to {new_tokens} tokens")
        current -= tokens[i] - new_tokens
        texts[i] = new_text
        tokens[i] = new_tokens

    if current > max_tokens and allow_fallback:
        warnings.append(BudgetWarning.FALLBACK_TRIM.value)
        current = _shave_uniformly(
            linear_sections, texts, tokens, removed, protected, current, max_tokens, estimate, trims
        )

    sections = []
    for i, section in enumerate(linear_sections):
        if i in removed:
            continue
        sections.append(section if texts[i] == section.text else replace(section, text=texts[i]))

    return BudgetResult(
        sections=sections,
        total_tokens_before=total_before,
        total_tokens_after=sum(tokens[i] for i in range(len(tokens)) if i not in removed),
        trims=trims,
        warnings=warnings,
        max_tokens=max_tokens,
        removed_keys=[linear_sections[i].key for i in sorted(removed)],
    )


def _shave_uniformly(
    linear_sections: Sequence[Any],
    texts: list[str],
    tokens: list[int],
    removed: set[int],
    protected: frozenset[Category],
    current: int,
    max_tokens: int,
    estimate: Callable[[str], int],
    trims: list[TrimRecord],
) -> int:
    """Shave the same number of chars from every remaining section.

    Mutates ``texts``, ``tokens`` and ``trims`` in place and returns the new
    running total.
    """
    candidates = [
        i for i in range(len(texts))
        if i not in removed and _category(linear_sections[i]) not in protected
    ]
    if not candidates or current <= 0:
        return current

    total_chars = sum(len(texts[i]) for i in candidates)
    chars_per_token = total_chars / current
    excess_chars = math.ceil((current - max_tokens) * chars_per_token)
    chars_per_section = math.ceil(excess_chars / len(candidates))

    for i in candidates:
        text = texts[i]
        header = _HEADER_PATTERN.match(text)
        header_length = len(header.group(1)) if header else 0
        if len(text) - header_length <= chars_per_section:
            continue

        target_length = max(header_length, len(text) - chars_per_section)
        new_text = _cut(text, target_length, header_length)
        new_tokens = estimate(new_text)
        if new_tokens >= tokens[i]:
            continue

        trims.append(
            TrimRecord(linear_sections[i].key, max(0, len(text) - len(new_text)), tokens[i] - new_tokens)
        )
        current -= tokens[i] - new_tokens
        texts[i] = new_text
        tokens[i] = new_tokens

    return current
