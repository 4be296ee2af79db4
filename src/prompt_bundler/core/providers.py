"""Built-in content providers for turn packets.

Each provider turns one part of a ``TurnPacket`` into sections for a single
category. Slot protection metadata comes from a ``SlotRegistry`` so that
deployments can load their own slot table.

Key Components:
    - SlotRegistry: (scope, slot name) -> Slot lookup with a default table
    - CoreProvider, RulesetProvider, ModulesProvider, WorldProvider
    - ScenarioProvider: scenario slots, reachability, scenario NPCs and
      optional inline slice summaries
    - EntryProvider: entry-bound NPC roster and the entry start text
    - StateProvider: live state JSON and the episodic memory log
    - InputProvider: player input plus conversation window extras
    - providers_for_packet(): The full provider set for a packet

Section keys:
    core.all, ruleset.<slot>, module.<id>.<slot>, world.<slot>,
    scenario.<slot>, scenario.reachability, scenario.inline.<kind>.<n>,
    npc.<id>[@<version>].<slot>, state.all, state.entry, state.memory,
    input.all, input.history.<age>
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Iterable, Mapping, Optional, Union

from prompt_bundler.core.assembler import AssemblyContext
from prompt_bundler.core.compaction import create_inline_summaries
from prompt_bundler.core.models import (
    Category,
    EntityRef,
    MemoryEntry,
    Section,
    SectionKind,
    Slot,
    render_memory_entries,
)
from prompt_bundler.core.token_management import TokenCounter
from prompt_bundler.core.turn_packet import NpcDoc, TurnPacket

logger = logging.getLogger(__name__)

# Added to the priority of NPCs named in AssemblyContext.npc_hints
NPC_HINT_PRIORITY_BOOST = 1000

NPC_SLOT_ORDER = ("bio", "persona", "triggers", "voice")


# =============================================================================
# Slot registry
# =============================================================================


DEFAULT_SLOTS: dict[tuple[str, str], Slot] = {
    ("ruleset", "principles"): Slot("principles", must_keep=True, min_chars=200, priority=90),
    ("ruleset", "choice_style"): Slot("choice_style", priority=50),
    ("module", "hints"): Slot("hints", priority=40),
    ("module", "actions"): Slot("actions", must_keep=True, min_chars=80, priority=60),
    ("world", "tone"): Slot("tone", must_keep=True, min_chars=120, priority=80),
    ("world", "taboos"): Slot("taboos", must_keep=True, min_chars=120, priority=90),
    ("world", "canon"): Slot("canon", priority=60),
    ("world", "lexicon"): Slot("lexicon", priority=30),
    ("scenario", "setup"): Slot("setup", priority=50),
    ("scenario", "beats"): Slot("beats", priority=40),
    ("npc", "bio"): Slot("bio"),
    ("npc", "persona"): Slot("persona"),
    ("npc", "triggers"): Slot("triggers"),
    ("input", "all"): Slot("all", must_keep=True, min_chars=40),
}


class SlotRegistry:
    """Slot definitions keyed by (scope, slot name)."""

    def __init__(self, slots: Optional[Mapping[tuple[str, str], Slot]] = None):
        self._slots = dict(DEFAULT_SLOTS if slots is None else slots)

    def get(self, scope: str, name: str) -> Optional[Slot]:
        return self._slots.get((scope, name))

    def register(self, scope: str, slot: Slot) -> None:
        self._slots[(scope, slot.name)] = slot


def _title(name: str) -> str:
    return name.replace("_", " ").title()


def _hinted(slug: str, context: AssemblyContext) -> bool:
    short = slug.split(".", 1)[-1]
    return slug in context.npc_hints or short in context.npc_hints


# =============================================================================
# Static documents
# =============================================================================


class CoreProvider:
    """``core.all`` from the code-owned core document."""

    category = Category.CORE
    sub_order = 0

    def __init__(self, packet: TurnPacket):
        self.packet = packet

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        core = self.packet.core
        parts = []
        if core.style:
            parts.append(f"Style: {core.style}")
        if core.safety:
            parts.append(f"Safety: {', '.join(core.safety)}")
        if core.output_rules:
            parts.append(f"Output Rules: {core.output_rules}")
        if not parts:
            return []
        text = "# CORE\n\n" + "\n".join(parts)
        return [Section(key="core.all", label="CORE", text=text, category=Category.CORE)]


class _SlottedProvider:
    scope = ""
    label = ""
    header = "##"

    def __init__(self, packet: TurnPacket, registry: Optional[SlotRegistry] = None):
        self.packet = packet
        self.registry = registry or SlotRegistry()

    def _slot_sections(self, prefix: str, label: str, slots: Mapping[str, str]) -> list[Section]:
        sections = []
        for name, body in slots.items():
            if not body:
                continue
            sections.append(
                Section(
                    key=f"{prefix}.{name}",
                    label=f"{label} - {_title(name)}",
                    text=f"{self.header} {_title(name)}\n{body}",
                    category=self.category,
                    slot=self.registry.get(self.scope, name),
                )
            )
        return sections


class RulesetProvider(_SlottedProvider):
    category = Category.RULESET
    sub_order = 0
    scope = "ruleset"

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        if self.packet.ruleset is None:
            return []
        return self._slot_sections("ruleset", "RULESET", self.packet.ruleset.slots)


class WorldProvider(_SlottedProvider):
    category = Category.WORLD
    sub_order = 0
    scope = "world"

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        if self.packet.world is None:
            return []
        return self._slot_sections("world", "WORLD", self.packet.world.slots)


class ModulesProvider(_SlottedProvider):
    """``module.<id>.hints`` and ``module.<id>.actions`` per module."""

    category = Category.MODULES
    sub_order = 0
    scope = "module"

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        sections = []
        for module in self.packet.modules:
            for raw_name, body in module.slots.items():
                name = raw_name.removeprefix("module.")
                if not body:
                    continue
                sections.append(
                    Section(
                        key=f"module.{module.id}.{name}",
                        label=f"MODULE - {module.id} {_title(name)}",
                        text=f"### {module.id} {_title(name)}\n{body}",
                        category=Category.MODULES,
                        slot=self.registry.get("module", name),
                    )
                )
        return sections


# =============================================================================
# NPC documents
# =============================================================================


def npc_sections(
    npc: NpcDoc,
    registry: SlotRegistry,
    *,
    source: Category,
    priority: int,
) -> list[Section]:
    """Sections for one NPC, all sharing one entity reference."""
    entity = EntityRef(slug=npc.slug, version=npc.version, source=source)
    ordered = [name for name in NPC_SLOT_ORDER if name in npc.slots]
    ordered += sorted(name for name in npc.slots if name not in NPC_SLOT_ORDER)

    sections = []
    for name in ordered:
        body = npc.slots[name]
        if not body:
            continue
        slot = registry.get("npc", name) or Slot(name)
        sections.append(
            Section(
                key=f"{entity.key}.{name}",
                label=f"NPC - {npc.display_name} {_title(name)}",
                text=f"## {npc.display_name} {_title(name)}\n{body}",
                category=Category.NPCS,
                slot=replace(slot, priority=priority),
                source=source,
                entity=entity,
            )
        )
    return sections


class ScenarioProvider:
    """Scenario slots, reachability, scenario NPCs and inline summaries.

    Emits nothing when the request disables the scenario or the packet has
    none. Scenario NPCs are placed in NPCS but keep SCENARIO as their
    source, so they win deduplication against roster NPCs.
    """

    category = Category.SCENARIO
    sub_order = 0

    def __init__(
        self,
        packet: TurnPacket,
        registry: Optional[SlotRegistry] = None,
        *,
        inline_summaries: bool = False,
        inline_summary_max_tokens: int = 50,
        counter: Union[TokenCounter, str, None] = None,
    ):
        self.packet = packet
        self.registry = registry or SlotRegistry()
        self.inline_summaries = inline_summaries
        self.inline_summary_max_tokens = inline_summary_max_tokens
        self.counter = counter

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        scenario = self.packet.scenario
        if scenario is None or not context.scenario_enabled:
            return []

        sections = []
        for name, body in scenario.slots.items():
            if not body:
                continue
            sections.append(
                Section(
                    key=f"scenario.{name}",
                    label=f"SCENARIO - {_title(name)}",
                    text=f"## {_title(name)}\n{body}",
                    category=Category.SCENARIO,
                    slot=self.registry.get("scenario", name),
                )
            )

        if scenario.reachability and scenario.reachability.reachable_nodes:
            nodes = ", ".join(scenario.reachability.reachable_nodes)
            sections.append(
                Section(
                    key="scenario.reachability",
                    label="SCENARIO - Reachability",
                    text=f"### Reachability: [{nodes}]",
                    category=Category.SCENARIO,
                )
            )

        if self.inline_summaries:
            sections.extend(self._inline_sections())

        for npc in scenario.npcs:
            priority = npc.priority or 0
            if _hinted(npc.slug, context):
                priority += NPC_HINT_PRIORITY_BOOST
            sections.extend(
                npc_sections(npc, self.registry, source=Category.SCENARIO, priority=priority)
            )
        return sections

    def _inline_sections(self) -> list[Section]:
        slices = self.packet.scenario.slices
        summaries = create_inline_summaries(
            slices.world,
            slices.adventure,
            self.inline_summary_max_tokens,
            counter=self.counter,
        )
        sections = []
        for kind, texts in (("world", summaries.world), ("adventure", summaries.adventure)):
            for index, text in enumerate(texts):
                if not text:
                    continue
                sections.append(
                    Section(
                        key=f"scenario.inline.{kind}.{index:03d}",
                        label=f"SCENARIO - Inline {kind.title()} {index + 1}",
                        text=f"### Inline {kind.title()}\n{text}",
                        category=Category.SCENARIO,
                        kind=SectionKind.INLINE_SUMMARY,
                    )
                )
        return sections


class EntryProvider:
    """Entry-bound NPC roster (declared sort order) and the entry start text.

    Roster NPCs without an explicit priority rank by ``sort_order``: NPCs
    declared later are dropped first.
    """

    category = Category.NPCS
    sub_order = 0

    def __init__(self, packet: TurnPacket, registry: Optional[SlotRegistry] = None):
        self.packet = packet
        self.registry = registry or SlotRegistry()

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        entry = self.packet.entry
        if entry is None:
            return []

        sections = []
        if entry.start:
            sections.append(
                Section(
                    key="state.entry",
                    label=f"ENTRY - {entry.id} Start",
                    text=f"## Entry Start\n{entry.start}",
                    category=Category.STATE,
                )
            )

        for npc in sorted(entry.npcs, key=lambda n: n.sort_order):
            priority = npc.priority if npc.priority is not None else -npc.sort_order
            if _hinted(npc.slug, context):
                priority += NPC_HINT_PRIORITY_BOOST
            sections.extend(
                npc_sections(npc, self.registry, source=Category.NPCS, priority=priority)
            )
        return sections


# =============================================================================
# Live documents
# =============================================================================


class StateProvider:
    """``state.all`` (JSON) and the ``state.memory`` episodic log."""

    category = Category.STATE
    sub_order = 1

    def __init__(self, packet: TurnPacket):
        self.packet = packet

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        sections = []
        if self.packet.state:
            sections.append(
                Section(
                    key="state.all",
                    label="STATE",
                    text="# STATE\n\n" + json.dumps(self.packet.state, indent=2),
                    category=Category.STATE,
                )
            )
        if self.packet.memory:
            entries = tuple(
                MemoryEntry(m.key, m.note, salience=m.salience, timestamp=m.timestamp)
                for m in self.packet.memory
            )
            sections.append(
                Section(
                    key="state.memory",
                    label="STATE - Episodic Memory",
                    text=render_memory_entries(entries, header="## Episodic Memory"),
                    category=Category.STATE,
                    kind=SectionKind.EPISODIC_MEMORY,
                    entries=entries,
                )
            )
        return sections


class InputProvider:
    """Player input (must_keep) followed by the conversation window.

    History extras are keyed by age, most recent first, so dropping the
    last extra removes the oldest message.
    """

    category = Category.INPUT
    sub_order = 0

    def __init__(self, packet: TurnPacket, registry: Optional[SlotRegistry] = None):
        self.packet = packet
        self.registry = registry or SlotRegistry()

    def get_sections(self, context: AssemblyContext) -> list[Section]:
        player_input = self.packet.input
        sections = [
            Section(
                key="input.all",
                label="INPUT",
                text=f"# INPUT\n\nKind: {player_input.kind}\nText: {player_input.text}",
                category=Category.INPUT,
                slot=self.registry.get("input", "all"),
            )
        ]
        history = self.packet.history
        for age, message in enumerate(reversed(history)):
            sections.append(
                Section(
                    key=f"input.history.{age:03d}",
                    label="INPUT - History",
                    text=f"## {message.role.title()}\n{message.content}",
                    category=Category.INPUT,
                )
            )
        return sections


def providers_for_packet(
    packet: TurnPacket,
    *,
    registry: Optional[SlotRegistry] = None,
    inline_summaries: bool = False,
    inline_summary_max_tokens: int = 50,
    counter: Union[TokenCounter, str, None] = None,
) -> list:
    """Build the full built-in provider set for a turn packet.

    Args:
        packet: Validated turn packet
        registry: Slot table (defaults to DEFAULT_SLOTS)
        inline_summaries: Emit compacted world/adventure slices
        inline_summary_max_tokens: Ceiling per inline summary
        counter: Optional token counter used for inline summaries

    Returns:
        Providers in category order
    """
    registry = registry or SlotRegistry()
    providers: Iterable = (
        CoreProvider(packet),
        RulesetProvider(packet, registry),
        ModulesProvider(packet, registry),
        WorldProvider(packet, registry),
        ScenarioProvider(
            packet,
            registry,
            inline_summaries=inline_summaries,
            inline_summary_max_tokens=inline_summary_max_tokens,
            counter=counter,
        ),
        EntryProvider(packet, registry),
        StateProvider(packet),
        InputProvider(packet, registry),
    )
    logger.debug(f"Built providers for packet (inline_summaries={inline_summaries})")
    return list(providers)
