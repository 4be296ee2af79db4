"""Tests for the cascading budget allocator.

Tests cover:
1. Warn stage (in-budget bundles above the warn threshold)
2. Drop stages: inline summaries, scenario, NPCs, state, input extras
3. Episodic memory capping
4. Proportional trim and last-resort protected truncation
5. Policy validation, injection and determinism
"""

import pytest

from prompt_bundler.core.allocator import (
    Allocation,
    BudgetAllocator,
    BudgetPolicy,
    allocate,
    drop_npcs,
    ReductionContext,
)
from prompt_bundler.core.linear_trim import TRIM_MARKER
from prompt_bundler.core.models import (
    BudgetWarning,
    Category,
    EntityRef,
    MemoryEntry,
    PolicyAction,
    SectionKind,
    Slot,
    render_memory_entries,
)
from prompt_bundler.core.token_management import make_estimator

from conftest import make_section


def keys(allocation):
    return [s.key for s in allocation.sections]


def memory_section(entries):
    entries = tuple(entries)
    return make_section(
        "state.memory",
        Category.STATE,
        text=render_memory_entries(entries, header="## Episodic Memory"),
        kind=SectionKind.EPISODIC_MEMORY,
        entries=entries,
    )


# =============================================================================
# Test: Warn Stage
# =============================================================================


class TestWarnStage:
    """Tests for in-budget bundles."""

    def test_under_threshold_untouched(self, scenario_sections):
        result = allocate(scenario_sections, 2000)
        assert isinstance(result, Allocation)
        assert result.sections == scenario_sections
        assert result.warnings == []
        assert result.policy_actions == []

    def test_above_threshold_warns_without_dropping(self):
        sections = [
            make_section("core.all", Category.CORE, 850),
            make_section("scenario.setup", Category.SCENARIO, 1000),
        ]
        result = allocate(sections, 2000)
        assert result.total_tokens_after == 1850
        assert result.sections == sections
        assert result.dropped == []
        assert result.warnings == [BudgetWarning.POLICY_UNDECIDED.value]
        assert result.policy_actions == [PolicyAction.SCENARIO_POLICY_UNDECIDED]

    def test_custom_warn_pct(self):
        sections = [make_section("core.all", Category.CORE, 50)]
        assert allocate(sections, 100, policy=BudgetPolicy(warn_pct=0.5)).warnings
        assert not allocate(sections, 100, policy=BudgetPolicy(warn_pct=0.6)).warnings


# =============================================================================
# Test: Drop Stages
# =============================================================================


class TestScenarioAndNpcDrops:
    """Tests for the scenario/NPC cascade on the reference bundle."""

    def test_dropping_scenario_is_enough(self, scenario_sections):
        result = allocate(scenario_sections, 700)

        assert result.total_tokens_before == 1050
        assert result.total_tokens_after == 650
        assert result.within_budget
        assert "scenario.setup" not in keys(result)
        assert keys(result)[-5:] == ["npc.a.bio", "npc.b.bio", "npc.c.bio", "npc.d.bio", "npc.e.bio"]
        assert result.policy_actions == [PolicyAction.SCENARIO_DROPPED]
        assert [d.to_dict() for d in result.dropped] == [
            {"id": "scenario:scenario.setup", "reason": "SCENARIO_DROPPED"}
        ]

    def test_npcs_dropped_after_scenario(self, scenario_sections):
        result = allocate(scenario_sections, 400)

        assert result.total_tokens_after == 350
        assert keys(result) == [
            "core.all", "ruleset.principles", "world.tone", "npc.a.bio", "npc.b.bio"
        ]
        assert result.policy_actions == [
            PolicyAction.SCENARIO_DROPPED,
            PolicyAction.NPC_DROPPED,
            PolicyAction.NPC_DROPPED,
            PolicyAction.NPC_DROPPED,
        ]
        assert [d.id for d in result.dropped[1:]] == [
            "npcs:npc.e.bio", "npcs:npc.d.bio", "npcs:npc.c.bio"
        ]

    def test_npc_priority_outranks_declaration_order(self):
        sections = [make_section("core.all", Category.CORE, 10)]
        for name, priority in (("a", 0), ("b", 5), ("c", 0)):
            sections.append(
                make_section(
                    f"npc.{name}.bio",
                    Category.NPCS,
                    20,
                    slot=Slot("bio", priority=priority),
                    entity=EntityRef(f"npc.{name}"),
                )
            )
        result = allocate(sections, 30)
        assert keys(result) == ["core.all", "npc.b.bio"]

    def test_npc_sections_dropped_per_entity(self):
        ctx = ReductionContext(max_tokens=0, policy=BudgetPolicy(), estimate=make_estimator())
        kiera = EntityRef("npc.kiera")
        sections = (
            make_section("npc.kiera.bio", Category.NPCS, 10, entity=kiera),
            make_section("npc.kiera.persona", Category.NPCS, 10, entity=kiera),
        )
        reduction = drop_npcs(sections, 5, ctx)
        assert reduction.sections == ()
        assert reduction.tokens_freed == 20
        assert reduction.actions == [PolicyAction.NPC_DROPPED]

    def test_must_keep_npc_never_dropped(self):
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section(
                "npc.kiera.bio",
                Category.NPCS,
                100,
                slot=Slot("bio", must_keep=True, min_chars=40),
                entity=EntityRef("npc.kiera"),
            ),
        ]
        result = allocate(sections, 50)
        assert keys(result) == ["core.all", "npc.kiera.bio"]
        assert result.sections[1].text.endswith(TRIM_MARKER)
        assert result.policy_actions == [PolicyAction.PROPORTIONAL_TRIM]
        assert result.within_budget


class TestOtherDrops:
    """Tests for inline summary, state and input extra drops."""

    def test_inline_summaries_dropped_together_first(self):
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section("scenario.inline.adventure.000", Category.SCENARIO, 20,
                         kind=SectionKind.INLINE_SUMMARY),
            make_section("scenario.inline.world.000", Category.SCENARIO, 20,
                         kind=SectionKind.INLINE_SUMMARY),
            make_section("scenario.setup", Category.SCENARIO, 20),
        ]
        result = allocate(sections, 55)
        assert keys(result) == ["core.all", "scenario.setup"]
        assert result.policy_actions == [PolicyAction.INLINE_SUMMARIES_DROPPED]
        assert len(result.dropped) == 2

    def test_state_dropped_last_first(self):
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section("state.a", Category.STATE, 20),
            make_section("state.b", Category.STATE, 20),
        ]
        result = allocate(sections, 35)
        assert keys(result) == ["core.all", "state.a"]
        assert result.policy_actions == [PolicyAction.STATE_DROPPED]

    def test_oldest_history_dropped_first(self):
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section("input.all", Category.INPUT, 10, slot=Slot("all", must_keep=True)),
            make_section("input.history.000", Category.INPUT, 20),
            make_section("input.history.001", Category.INPUT, 20),
        ]
        result = allocate(sections, 45)
        assert keys(result) == ["core.all", "input.all", "input.history.000"]
        assert result.policy_actions == [PolicyAction.INPUT_DROPPED]


# =============================================================================
# Test: Episodic Memory
# =============================================================================


class TestEpisodicCap:
    """Tests for cap_episodic_memory."""

    def test_keeps_top_entries_by_salience(self):
        entries = [
            MemoryEntry(f"m{i:02d}", "n" * 32, salience=i / 100, timestamp=i)
            for i in range(15)
        ]
        sections = [make_section("core.all", Category.CORE, 10), memory_section(entries)]

        result = allocate(sections, 130)

        memory = result.sections[1]
        assert [e.key for e in memory.entries] == [f"m{i:02d}" for i in range(14, 4, -1)]
        assert memory.text.startswith("## Episodic Memory\n- [m14]")
        assert result.policy_actions == [PolicyAction.EPISODIC_CAPPED]
        assert result.within_budget

    def test_timestamp_breaks_salience_ties(self):
        entries = [
            MemoryEntry("old", "o" * 200, salience=0.5, timestamp=1),
            MemoryEntry("new", "n" * 200, salience=0.5, timestamp=5),
        ]
        sections = [make_section("core.all", Category.CORE, 10), memory_section(entries)]
        result = allocate(sections, 80, policy=BudgetPolicy(episodic_cap=1))
        assert [e.key for e in result.sections[1].entries] == ["new"]

    def test_episodic_section_not_dropped_by_state_stage(self):
        entries = [MemoryEntry("m1", "x" * 40)]
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section("state.all", Category.STATE, 30),
            memory_section(entries),
        ]
        result = allocate(sections, 30)
        assert "state.memory" in keys(result)
        assert "state.all" not in keys(result)


# =============================================================================
# Test: Protected Content
# =============================================================================


class TestProtectedContent:
    """Tests for protected categories."""

    def test_protected_truncated_as_last_resort(self):
        sections = [make_section("core.all", Category.CORE, 500)]
        result = allocate(sections, 100)

        assert keys(result) == ["core.all"]
        assert result.sections[0].text.endswith(TRIM_MARKER)
        assert result.within_budget
        assert result.policy_actions == [PolicyAction.PROTECTED_TRUNCATED]
        assert BudgetWarning.PROTECTED_TRUNCATED.value in result.warnings

    def test_protected_never_truncated_to_marker(self):
        sections = [
            make_section("core.all", Category.CORE, text="Rule line.\n" * 400),
            make_section("world.tone", Category.WORLD, text="Dark and grim.\n" * 50),
        ]
        result = allocate(sections, 2)

        assert keys(result) == ["core.all", "world.tone"]
        assert result.sections[0].text == "Rule line.\n" + TRIM_MARKER
        assert result.sections[1].text == "Dark and grim.\n" + TRIM_MARKER
        assert result.warnings[-2:] == [
            BudgetWarning.PROTECTED_TRUNCATED.value,
            BudgetWarning.BUDGET_EXCEEDED.value,
        ]

    def test_unprotected_trimmed_before_protected(self):
        sections = [
            make_section("world.tone", Category.WORLD, 50),
            make_section("state.all", Category.STATE, 50, slot=Slot("all", must_keep=True)),
        ]
        result = allocate(sections, 80)
        assert result.sections[0].text == sections[0].text
        assert result.policy_actions == [PolicyAction.PROPORTIONAL_TRIM]
        assert BudgetWarning.PROTECTED_TRUNCATED.value not in result.warnings

    def test_never_raises_when_budget_impossible(self):
        sections = [make_section("core.all", Category.CORE, 10)]
        result = allocate(sections, 0)
        assert keys(result) == ["core.all"]
        assert not result.within_budget
        assert result.warnings[-1] == BudgetWarning.BUDGET_EXCEEDED.value

    def test_custom_protected_categories(self):
        sections = [
            make_section("core.all", Category.CORE, 10),
            make_section("scenario.setup", Category.SCENARIO, 50),
        ]
        policy = BudgetPolicy(protected_categories=frozenset({Category.CORE, Category.SCENARIO}))
        result = allocate(sections, 40, policy=policy)
        assert "scenario.setup" in keys(result)
        assert PolicyAction.SCENARIO_DROPPED not in result.policy_actions


# =============================================================================
# Test: Policy and Allocator
# =============================================================================


class TestBudgetPolicy:
    """Tests for BudgetPolicy validation."""

    def test_defaults(self):
        policy = BudgetPolicy()
        assert policy.warn_pct == 0.9
        assert policy.episodic_cap == 10
        assert policy.to_dict()["protected_categories"] == ["CORE", "RULESET", "WORLD"]

    @pytest.mark.parametrize("warn_pct", [0.0, -0.1, 1.01])
    def test_invalid_warn_pct(self, warn_pct):
        with pytest.raises(ValueError):
            BudgetPolicy(warn_pct=warn_pct)

    def test_invalid_episodic_cap(self):
        with pytest.raises(ValueError):
            BudgetPolicy(episodic_cap=-1)


class TestBudgetAllocator:
    """Tests for BudgetAllocator behaviour."""

    def test_input_not_mutated(self, scenario_sections):
        snapshot = list(scenario_sections)
        allocate(scenario_sections, 400)
        assert scenario_sections == snapshot

    def test_deterministic(self, scenario_sections):
        first = allocate(scenario_sections, 400).to_dict()
        second = allocate(scenario_sections, 400).to_dict()
        assert first == second

    def test_negative_budget_clamped(self):
        result = allocate([make_section("core.all", Category.CORE, 1)], -10)
        assert result.max_tokens == 0

    def test_injected_strategies(self, scenario_sections):
        result = BudgetAllocator(strategies=()).allocate(scenario_sections, 400)
        assert result.sections == scenario_sections
        assert result.warnings == [BudgetWarning.BUDGET_EXCEEDED.value]

    def test_custom_counter(self):
        sections = [
            make_section("core.all", Category.CORE, text="one two"),
            make_section("state.all", Category.STATE, text="three four five"),
        ]
        result = BudgetAllocator(counter=lambda text: len(text.split())).allocate(sections, 3)
        assert result.total_tokens_before == 5
        assert keys(result) == ["core.all"]

    def test_to_dict(self, scenario_sections):
        data = allocate(scenario_sections, 700).to_dict()
        assert data["within_budget"] is True
        assert data["policy_actions"] == ["SCENARIO_DROPPED"]
        assert data["trims"][0]["key"] == "scenario.setup"
