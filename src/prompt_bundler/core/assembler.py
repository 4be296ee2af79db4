"""Context assembly: merge provider sections into one ordered sequence.

Key Components:
    - AssemblyContext: Per-request flags handed to every provider
    - ContentProvider: Protocol implemented by section sources
    - Assembly: Ordered sections plus sections removed while assembling
    - assemble() / assemble_detailed(): Collect, sort, dedupe, verify
    - verify_category_order(): Scan for the non-decreasing category invariant

Ordering:
    Sections are stable-sorted by (category, provider sub-order, key).
    Entity sections ignore provider sub-order so that occurrences of the
    same entity from different providers sort next to each other. Absent
    categories are simply omitted; only a missing CORE raises.

Usage:
    from prompt_bundler.core.assembler import AssemblyContext, assemble

    sections = assemble(providers, AssemblyContext(scenario_enabled=False))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from prompt_bundler.core.dedup import dedupe_sections
from prompt_bundler.core.errors import CategoryOrderError, MissingCoreCategoryError
from prompt_bundler.core.models import (
    REASON_DUPLICATE_KEY,
    Category,
    DroppedSection,
    Section,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssemblyContext:
    """Per-request flags passed to providers.

    Attributes:
        scenario_enabled: Whether scenario content is requested at all
        npc_hints: Entity slugs the caller wants favoured when NPCs are dropped
    """

    scenario_enabled: bool = True
    npc_hints: tuple[str, ...] = ()


@runtime_checkable
class ContentProvider(Protocol):
    """Source of sections for one category.

    Attributes:
        category: Category stamped as ``source`` on sections that lack one
        sub_order: Ordering among providers of the same category
    """

    category: Category
    sub_order: int

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        ...


@dataclass
class Assembly:
    """Result of assembling provider output.

    Attributes:
        sections: Sections in non-decreasing category order
        dropped: Sections removed by deduplication or duplicate-key checks
    """

    sections: list[Section] = field(default_factory=list)
    dropped: list[DroppedSection] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sections": [s.to_dict() for s in self.sections],
            "dropped": [d.to_dict() for d in self.dropped],
        }


def verify_category_order(sections: Sequence[Section]) -> None:
    """Raise CategoryOrderError if categories ever decrease along the sequence."""
    for index in range(1, len(sections)):
        previous = sections[index - 1].category
        current = sections[index].category
        if current < previous:
            raise CategoryOrderError(index, previous.name, current.name)


def _collect(
    providers: Sequence[ContentProvider],
    context: AssemblyContext,
) -> list[tuple[int, Section]]:
    collected: list[tuple[int, Section]] = []
    for provider in providers:
        provider_category = Category(provider.category)
        sub_order = getattr(provider, "sub_order", 0)
        for section in provider.get_sections(context):
            if section.source is None:
                section = replace(section, source=provider_category)
            collected.append((sub_order, section))
    return collected


def _sort_key(item: tuple[int, Section]) -> tuple[int, int, str]:
    sub_order, section = item
    if section.entity is not None:
        sub_order = 0
    return (int(section.category), sub_order, section.key)


def assemble_detailed(
    providers: Sequence[ContentProvider],
    context: Optional[AssemblyContext] = None,
) -> Assembly:
    """Collect, order and deduplicate sections from providers.

    Args:
        providers: Content providers in any order
        context: Per-request flags (defaults to AssemblyContext())

    Returns:
        Assembly with ordered sections and the sections removed on the way

    Raises:
        MissingCoreCategoryError: No provider supplied a CORE section
        CategoryOrderError: The ordered result broke the category invariant
    """
    context = context or AssemblyContext()
    collected = _collect(providers, context)

    if not any(section.category == Category.CORE for _, section in collected):
        raise MissingCoreCategoryError(len(providers))

    ordered = [section for _, section in sorted(collected, key=_sort_key)]
    deduped, dropped = dedupe_sections(ordered)

    sections: list[Section] = []
    seen_keys: set[str] = set()
    for section in deduped:
        if section.key in seen_keys:
            logger.debug(f"Dropping duplicate section key {section.key}")
            dropped.append(DroppedSection(id=section.categorized_id, reason=REASON_DUPLICATE_KEY))
            continue
        seen_keys.add(section.key)
        sections.append(section)

    verify_category_order(sections)

    logger.debug(
        f"Assembled {len(sections)} sections from {len(providers)} providers "
        f"({len(dropped)} removed)"
    )
    return Assembly(sections=sections, dropped=dropped)


def assemble(
    providers: Sequence[ContentProvider],
    context: Optional[AssemblyContext] = None,
) -> list[Section]:
    """Assemble provider sections into the strictly ordered section list."""
    return assemble_detailed(providers, context).sections
