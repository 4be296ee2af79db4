"""Tests for turn packet models and the built-in content providers."""

import pytest
from pydantic import ValidationError

from prompt_bundler.core.assembler import AssemblyContext, assemble_detailed
from prompt_bundler.core.errors import MissingCoreCategoryError
from prompt_bundler.core.models import Category, SectionKind, Slot
from prompt_bundler.core.providers import (
    NPC_HINT_PRIORITY_BOOST,
    CoreProvider,
    EntryProvider,
    InputProvider,
    ModulesProvider,
    ScenarioProvider,
    SlotRegistry,
    StateProvider,
    providers_for_packet,
)
from prompt_bundler.core.turn_packet import TurnPacket, load_turn_packet


@pytest.fixture
def packet(packet_data):
    return TurnPacket.model_validate(packet_data)


def by_key(sections):
    return {s.key: s for s in sections}


class TestTurnPacket:
    """Tests for turn packet validation."""

    def test_load_from_file(self, packet_file):
        packet = load_turn_packet(packet_file)
        assert packet.core.style == "Second person, present tense."
        assert packet.entry.npcs[1].sort_order == 1
        assert packet.scenario.npcs[0].slug == "npc.kiera"

    def test_core_required(self, packet_data):
        del packet_data["core"]
        with pytest.raises(ValidationError):
            TurnPacket.model_validate(packet_data)

    def test_minimal_packet(self):
        packet = TurnPacket.model_validate({"core": {"style": "Terse."}})
        assert packet.scenario is None
        assert packet.input.kind == "text"
        assert packet.history == []


class TestStaticProviders:
    """Tests for core, ruleset, module and world providers."""

    def test_core_text(self, packet):
        (core,) = CoreProvider(packet).get_sections(AssemblyContext())
        assert core.key == "core.all"
        assert core.text.startswith("# CORE\n\nStyle: Second person, present tense.")
        assert "Safety: No graphic violence, No real-world politics" in core.text

    def test_empty_core_yields_nothing(self):
        packet = TurnPacket.model_validate({"core": {}})
        assert CoreProvider(packet).get_sections(AssemblyContext()) == []
        with pytest.raises(MissingCoreCategoryError):
            assemble_detailed(providers_for_packet(packet))

    def test_module_prefix_stripped(self, packet):
        sections = by_key(ModulesProvider(packet).get_sections(AssemblyContext()))
        hints = sections["module.stealth.hints"]
        assert hints.text == "### stealth Hints\nShadows grant advantage."
        assert hints.slot.priority == 40
        assert sections["module.stealth.actions"].must_keep

    def test_registry_override(self, packet):
        registry = SlotRegistry()
        registry.register("module", Slot("hints", must_keep=True, priority=99))
        sections = by_key(ModulesProvider(packet, registry).get_sections(AssemblyContext()))
        assert sections["module.stealth.hints"].slot.priority == 99


class TestScenarioProvider:
    """Tests for ScenarioProvider."""

    def test_slots_reachability_and_npcs(self, packet):
        sections = by_key(ScenarioProvider(packet).get_sections(AssemblyContext()))
        assert sections["scenario.reachability"].text == (
            "### Reachability: [node.crater, node.market]"
        )
        kiera = sections["npc.kiera@1.0.0.bio"]
        assert kiera.category == Category.NPCS
        assert kiera.source == Category.SCENARIO
        assert kiera.entity.slug == "npc.kiera"

    def test_disabled_by_context(self, packet):
        provider = ScenarioProvider(packet)
        assert provider.get_sections(AssemblyContext(scenario_enabled=False)) == []

    def test_inline_summaries(self, packet):
        provider = ScenarioProvider(packet, inline_summaries=True)
        sections = by_key(provider.get_sections(AssemblyContext()))
        world = sections["scenario.inline.world.000"]
        assert world.kind == SectionKind.INLINE_SUMMARY
        assert "scenario.inline.adventure.000" in sections

    def test_no_inline_summaries_by_default(self, packet):
        sections = ScenarioProvider(packet).get_sections(AssemblyContext())
        assert not any(s.kind == SectionKind.INLINE_SUMMARY for s in sections)


class TestEntryProvider:
    """Tests for EntryProvider."""

    def test_roster_priority_from_sort_order(self, packet):
        sections = by_key(EntryProvider(packet).get_sections(AssemblyContext()))
        assert sections["npc.kiera@1.0.0.bio"].priority == 0
        assert sections["npc.tomas.bio"].priority == -1
        assert sections["npc.tomas.persona"].source == Category.NPCS

    def test_hint_boost(self, packet):
        context = AssemblyContext(npc_hints=("tomas",))
        sections = by_key(EntryProvider(packet).get_sections(context))
        assert sections["npc.tomas.bio"].priority == NPC_HINT_PRIORITY_BOOST - 1

    def test_entry_start_in_state(self, packet):
        sections = by_key(EntryProvider(packet).get_sections(AssemblyContext()))
        start = sections["state.entry"]
        assert start.category == Category.STATE
        assert start.text == "## Entry Start\nDawn over the crater rim."


class TestLiveProviders:
    """Tests for state and input providers."""

    def test_state_and_memory(self, packet):
        sections = by_key(StateProvider(packet).get_sections(AssemblyContext()))
        assert sections["state.all"].text.startswith("# STATE\n\n{")
        memory = sections["state.memory"]
        assert memory.kind == SectionKind.EPISODIC_MEMORY
        assert [e.key for e in memory.entries] == ["m1", "m2"]
        assert memory.text.startswith("## Episodic Memory\n- [m1] Met Kiera at the rim.")

    def test_input_and_history_by_age(self, packet):
        sections = InputProvider(packet).get_sections(AssemblyContext())
        assert [s.key for s in sections] == ["input.all", "input.history.000", "input.history.001"]
        assert sections[0].text == "# INPUT\n\nKind: text\nText: I ask Kiera about the map."
        assert sections[0].must_keep
        assert sections[1].text == "## Player\nI look around."


class TestProvidersForPacket:
    """Tests for the assembled built-in provider set."""

    def test_full_assembly_order(self, packet):
        assembly = assemble_detailed(providers_for_packet(packet))
        assert [s.key for s in assembly.sections] == [
            "core.all",
            "ruleset.choice_style",
            "ruleset.principles",
            "module.stealth.actions",
            "module.stealth.hints",
            "world.canon",
            "world.taboos",
            "world.tone",
            "scenario.reachability",
            "scenario.setup",
            "npc.kiera@1.0.0.bio",
            "npc.tomas.bio",
            "npc.tomas.persona",
            "state.entry",
            "state.all",
            "state.memory",
            "input.all",
            "input.history.000",
            "input.history.001",
        ]
        kiera = assembly.sections[10]
        assert kiera.source == Category.SCENARIO
        assert [d.id for d in assembly.dropped] == ["npcs:npc.kiera@1.0.0.bio"]

    def test_roster_npc_kept_without_scenario(self, packet):
        context = AssemblyContext(scenario_enabled=False)
        assembly = assemble_detailed(providers_for_packet(packet), context)
        keys = [s.key for s in assembly.sections]
        assert "scenario.setup" not in keys
        kiera = next(s for s in assembly.sections if s.key == "npc.kiera@1.0.0.bio")
        assert kiera.source == Category.NPCS
        assert assembly.dropped == []
