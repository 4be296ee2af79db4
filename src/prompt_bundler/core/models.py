"""Data model for prompt bundles.

Defines the ordered section model shared by the assembler, the budget
allocator and the linear trim primitive.

Key Components:
    - Category: Fixed-precedence content class (CORE ... INPUT)
    - SectionKind: Tag distinguishing plain content, inline summaries and
      episodic memory logs
    - Slot: Protection metadata (must_keep, min_chars, priority)
    - EntityRef: Stable reference to a deduplicated entity (e.g. an NPC)
    - MemoryEntry: One episodic memory record with salience and timestamp
    - Section: Atomic, immutable unit of a bundle
    - TrimRecord: What a reduction removed from one section
    - PolicyAction / BudgetWarning: Audit tags emitted by the allocator

Usage:
    from prompt_bundler.core.models import Category, Section, Slot

    core = Section(key="core.all", label="CORE", text="...", category=Category.CORE)
    bio = Section(
        key="npc.kiera@1.0.0.bio",
        label="NPC - Kiera Bio",
        text="...",
        category=Category.NPCS,
        slot=Slot(name="bio", priority=10),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Optional


class Category(IntEnum):
    """Priority class of a section.

    Lower values have higher precedence and are the last to be reduced.
    The order is total and fixed; rendering always follows it.
    """

    CORE = 0
    RULESET = 1
    MODULES = 2
    WORLD = 3
    SCENARIO = 4
    NPCS = 5
    STATE = 6
    INPUT = 7

    @property
    def tag(self) -> str:
        """Lowercase name used in categorized ids (e.g. ``npcs``)."""
        return self.name.lower()


# Categories that are never dropped and only truncated as a flagged last resort
PROTECTED_CATEGORIES: frozenset[Category] = frozenset(
    {Category.CORE, Category.RULESET, Category.WORLD}
)

# Key prefixes used when a linear section carries no explicit category
KEY_PREFIX_CATEGORIES: tuple[tuple[str, Category], ...] = (
    ("core.", Category.CORE),
    ("ruleset.", Category.RULESET),
    ("module.", Category.MODULES),
    ("world.", Category.WORLD),
    ("scenario.", Category.SCENARIO),
    ("npc.", Category.NPCS),
    ("state.", Category.STATE),
    ("input.", Category.INPUT),
)


def category_for_key(key: str) -> Category:
    """Derive a category from a section key prefix.

    Args:
        key: Section key such as ``"world.tone"`` or ``"npc.kiera.bio"``

    Returns:
        Matching Category, INPUT when no prefix matches
    """
    for prefix, category in KEY_PREFIX_CATEGORIES:
        if key.startswith(prefix):
            return category
    return Category.INPUT


class SectionKind(str, Enum):
    """Variant tag for sections.

    CONTENT: Ordinary authored content.
    INLINE_SUMMARY: Pre-rendered summary of a world/adventure slice. Purely
        additive, so it is the first thing dropped under budget pressure.
    EPISODIC_MEMORY: Volatile memory log; carries ranked ``entries`` and is
        capped rather than dropped.
    """

    CONTENT = "content"
    INLINE_SUMMARY = "inline_summary"
    EPISODIC_MEMORY = "episodic_memory"


@dataclass(frozen=True)
class Slot:
    """Protection metadata attached to a section.

    Attributes:
        name: Slot name (e.g. ``principles``, ``bio``)
        must_keep: Section may be truncated but never removed
        min_chars: Truncation floor for must_keep sections
        priority: Higher values are reduced later within a category
    """

    name: str
    must_keep: bool = False
    min_chars: Optional[int] = None
    priority: Optional[int] = None

    def __post_init__(self) -> None:
        if self.min_chars is not None and self.min_chars < 0:
            raise ValueError(f"min_chars must be non-negative, got {self.min_chars}")


@dataclass(frozen=True)
class EntityRef:
    """Reference to an entity that may be supplied by several sources.

    Occurrences sharing a ``slug`` are duplicates of one entity; ``key``
    includes the version and is used for deterministic tie-breaking.

    Attributes:
        slug: Stable entity identity (e.g. ``npc.kiera``)
        version: Optional version string (e.g. ``1.0.0``)
        source: Category of the provider that supplied this occurrence
    """

    slug: str
    version: Optional[str] = None
    source: Category = Category.NPCS

    def __post_init__(self) -> None:
        if not self.slug:
            raise ValueError("EntityRef.slug must be non-empty")

    @property
    def key(self) -> str:
        return f"{self.slug}@{self.version}" if self.version else self.slug

    @classmethod
    def parse(cls, ref: str, source: Category = Category.NPCS) -> "EntityRef":
        """Build an EntityRef from a ``slug@version`` ref string."""
        slug, sep, version = ref.partition("@")
        return cls(slug=slug, version=version if sep else None, source=source)


@dataclass(frozen=True)
class MemoryEntry:
    """One episodic memory record.

    Attributes:
        key: Stable memory key
        note: Memory text
        salience: Importance score; higher is kept first
        timestamp: Monotonic recency marker (turn number or epoch seconds)
    """

    key: str
    note: str
    salience: float = 0.0
    timestamp: int = 0

    def render(self) -> str:
        return f"- [{self.key}] {self.note}"


def render_memory_entries(entries: tuple[MemoryEntry, ...], header: str = "## Memory") -> str:
    """Render memory entries as a markdown block."""
    if not entries:
        return header
    return header + "\n" + "\n".join(entry.render() for entry in entries)


@dataclass(frozen=True)
class Section:
    """Atomic unit of a prompt bundle.

    Sections are immutable; reductions produce new instances via
    ``with_text``.

    Attributes:
        key: Unique key within a bundle
        label: Human-readable label
        text: Rendered text
        category: Placement category
        slot: Optional protection metadata
        kind: Variant tag (content, inline summary, episodic memory)
        source: Category of the supplying provider (defaults to ``category``)
        entity: Entity reference for entity-bearing sections
        entries: Memory entries for EPISODIC_MEMORY sections
    """

    key: str
    label: str
    text: str
    category: Category
    slot: Optional[Slot] = None
    kind: SectionKind = SectionKind.CONTENT
    source: Optional[Category] = None
    entity: Optional[EntityRef] = None
    entries: tuple[MemoryEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Section.key must be non-empty")
        if not isinstance(self.category, Category):
            object.__setattr__(self, "category", Category(self.category))

    @property
    def source_category(self) -> Category:
        return self.source if self.source is not None else self.category

    @property
    def must_keep(self) -> bool:
        return bool(self.slot and self.slot.must_keep)

    @property
    def min_chars(self) -> int:
        if self.slot and self.slot.min_chars:
            return self.slot.min_chars
        return 0

    @property
    def priority(self) -> int:
        if self.slot and self.slot.priority is not None:
            return self.slot.priority
        return 0

    @property
    def is_protected(self) -> bool:
        return self.category in PROTECTED_CATEGORIES

    @property
    def categorized_id(self) -> str:
        """Audit identifier, e.g. ``npcs:npc.kiera@1.0.0.bio``."""
        return f"{self.category.tag}:{self.key}"

    def with_text(self, text: str) -> "Section":
        return replace(self, text=text)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "text": self.text,
            "category": self.category.name,
            "kind": self.kind.value,
        }
        if self.slot is not None:
            data["slot"] = {
                "name": self.slot.name,
                "must_keep": self.slot.must_keep,
                "min_chars": self.slot.min_chars,
                "priority": self.slot.priority,
            }
        if self.source is not None and self.source != self.category:
            data["source"] = self.source.name
        if self.entity is not None:
            data["entity"] = self.entity.key
        return data


@dataclass(frozen=True)
class TrimRecord:
    """Record of text removed from one section by a reduction."""

    key: str
    removed_chars: int
    removed_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "removed_chars": self.removed_chars,
            "removed_tokens": self.removed_tokens,
        }


@dataclass(frozen=True)
class DroppedSection:
    """A section removed from the bundle, with the reason tag."""

    id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "reason": self.reason}


class PolicyAction(str, Enum):
    """Tags recorded in the audit policy list, in the order applied."""

    SCENARIO_POLICY_UNDECIDED = "SCENARIO_POLICY_UNDECIDED"
    INLINE_SUMMARIES_DROPPED = "INLINE_SUMMARIES_DROPPED"
    SCENARIO_DROPPED = "SCENARIO_DROPPED"
    NPC_DROPPED = "NPC_DROPPED"
    STATE_DROPPED = "STATE_DROPPED"
    INPUT_DROPPED = "INPUT_DROPPED"
    EPISODIC_CAPPED = "EPISODIC_CAPPED"
    PROPORTIONAL_TRIM = "PROPORTIONAL_TRIM"
    PROTECTED_TRUNCATED = "PROTECTED_TRUNCATED"


# Category -> policy tag for whole-section drops
DROP_ACTIONS: dict[Category, PolicyAction] = {
    Category.SCENARIO: PolicyAction.SCENARIO_DROPPED,
    Category.NPCS: PolicyAction.NPC_DROPPED,
    Category.STATE: PolicyAction.STATE_DROPPED,
    Category.INPUT: PolicyAction.INPUT_DROPPED,
}


class BudgetWarning(str, Enum):
    """Machine-readable warning codes surfaced in budget results."""

    POLICY_UNDECIDED = "SCENARIO_POLICY_UNDECIDED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED_AFTER_ALL_REDUCTIONS"
    PROTECTED_TRUNCATED = "PROTECTED_CONTENT_TRUNCATED"
    FALLBACK_TRIM = "fallback_trim_applied"


# Reason tags for sections removed during assembly
REASON_DEDUPED = "DEDUPED"
REASON_DUPLICATE_KEY = "DUPLICATE_KEY"
