"""Entity deduplication across content sources.

The same entity (typically an NPC) can be supplied by more than one provider,
e.g. by the scenario and by the entry roster. Exactly one occurrence per
entity slug survives:

    1. lowest source category wins (SCENARIO beats NPCS)
    2. ties within a category go to the lexicographically smallest key
    3. survivors are ordered by (source, key)

Usage:
    from prompt_bundler.core.dedup import dedupe

    survivors = dedupe([
        EntityRef.parse("npc.kiera@1.0.0", Category.NPCS),
        EntityRef.parse("npc.kiera@1.0.0", Category.SCENARIO),
    ])
    # [EntityRef(slug='npc.kiera', version='1.0.0', source=<Category.SCENARIO: 4>)]
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Sequence

from prompt_bundler.core.models import (
    REASON_DEDUPED,
    DroppedSection,
    EntityRef,
    Section,
)

logger = logging.getLogger(__name__)


def _rank(entity: EntityRef) -> tuple[int, str]:
    return (int(entity.source), entity.key)


def dedupe(entities: Iterable[EntityRef]) -> list[EntityRef]:
    """Keep one occurrence per entity slug.

    Idempotent: ``dedupe(dedupe(x)) == dedupe(x)``.

    Args:
        entities: Entity occurrences in any order

    Returns:
        Surviving occurrences sorted by (source, key)
    """
    winners: dict[str, EntityRef] = {}
    for entity in entities:
        current = winners.get(entity.slug)
        if current is None or _rank(entity) < _rank(current):
            winners[entity.slug] = entity
    return sorted(winners.values(), key=_rank)


def section_entity(section: Section) -> EntityRef:
    """Entity occurrence of a section, stamped with the section's source."""
    assert section.entity is not None
    return replace(section.entity, source=section.source_category)


def dedupe_sections(sections: Sequence[Section]) -> tuple[list[Section], list[DroppedSection]]:
    """Apply ``dedupe`` to entity-bearing sections.

    All sections belonging to a winning occurrence are kept; sections of
    losing occurrences are reported with reason ``DEDUPED``. Sections
    without an entity pass through. Relative order is preserved.

    Returns:
        Tuple of (kept sections, dropped sections)
    """
    occurrences = [section_entity(s) for s in sections if s.entity is not None]
    winners = {entity.slug: entity for entity in dedupe(occurrences)}

    kept: list[Section] = []
    dropped: list[DroppedSection] = []
    for section in sections:
        if section.entity is None:
            kept.append(section)
            continue
        occurrence = section_entity(section)
        if winners[occurrence.slug] == occurrence:
            kept.append(section)
        else:
            logger.debug(
                f"Deduped {section.key} from {occurrence.source.name}; "
                f"kept source {winners[occurrence.slug].source.name}"
            )
            dropped.append(DroppedSection(id=section.categorized_id, reason=REASON_DEDUPED))
    return kept, dropped
