"""Budget allocation: fit an assembled bundle into a token ceiling.

The allocator estimates the bundle (sum of per-section estimates) and, when
it is over budget, runs an ordered list of pure reduction strategies until
it fits. Each strategy takes ``(sections, excess, ctx)`` and returns a
``Reduction``; none of them mutate their input.

Key Components:
    - BudgetPolicy: Injected configuration (warn threshold, episodic cap,
      protected categories, linear trim knobs)
    - Reduction / ReductionContext: Strategy result and inputs
    - DEFAULT_STRATEGIES: The cascading reduction order
    - Allocation: Final sections, token totals, trims, warnings, policy tags
    - BudgetAllocator / allocate(): Run the cascade

Cascade (stopping as soon as the bundle fits):
    1. drop_inline_summaries   INLINE_SUMMARY sections, all at once
    2. drop_scenario           SCENARIO sections, last first
    3. drop_npcs               NPC entities, lowest priority first
    4. drop_state              non-episodic STATE sections, last first
    5. drop_input_extras       optional INPUT sections, last first
    6. cap_episodic_memory     keep the top-N memory entries
    7. proportional_trim       linear trim outside protected categories
    8. truncate_protected      last resort over CORE/RULESET/WORLD

must_keep sections are never dropped. Protected categories are never
dropped and only truncated by the last stage, which raises the
PROTECTED_CONTENT_TRUNCATED warning. If the bundle still does not fit,
BUDGET_EXCEEDED_AFTER_ALL_REDUCTIONS is reported; the allocator never raises.

Usage:
    from prompt_bundler.core.allocator import BudgetPolicy, allocate

    result = allocate(sections, 700, policy=BudgetPolicy(episodic_cap=5))
    if not result.within_budget:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence, Union

from prompt_bundler.core.linear_trim import (
    MIN_CHARS_GUARDRAIL_RATIO,
    SOFT_BUDGET_PER_SLOT_TOKENS,
    apply_budget,
)
from prompt_bundler.core.models import (
    DROP_ACTIONS,
    PROTECTED_CATEGORIES,
    BudgetWarning,
    Category,
    DroppedSection,
    PolicyAction,
    Section,
    SectionKind,
    TrimRecord,
    render_memory_entries,
)
from prompt_bundler.core.token_management import TokenCounter, make_estimator

logger = logging.getLogger(__name__)

DEFAULT_WARN_PCT = 0.9
DEFAULT_EPISODIC_CAP = 10


@dataclass(frozen=True)
class BudgetPolicy:
    """Allocator configuration, injected per call.

    Attributes:
        warn_pct: Usage fraction at which an in-budget bundle is flagged
        episodic_cap: Memory entries kept per episodic section when capping
        protected_categories: Never dropped, truncated only as a last resort
        soft_budget_per_slot_tokens: Per-section size warning threshold
        min_chars_guardrail_ratio: Share of the budget min_chars may claim
    """

    warn_pct: float = DEFAULT_WARN_PCT
    episodic_cap: int = DEFAULT_EPISODIC_CAP
    protected_categories: frozenset[Category] = PROTECTED_CATEGORIES
    soft_budget_per_slot_tokens: int = SOFT_BUDGET_PER_SLOT_TOKENS
    min_chars_guardrail_ratio: float = MIN_CHARS_GUARDRAIL_RATIO

    def __post_init__(self) -> None:
        if not 0.0 < self.warn_pct <= 1.0:
            raise ValueError(f"warn_pct must be in (0.0, 1.0], got {self.warn_pct}")
        if self.episodic_cap < 0:
            raise ValueError(f"episodic_cap must be non-negative, got {self.episodic_cap}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "warn_pct": self.warn_pct,
            "episodic_cap": self.episodic_cap,
            "protected_categories": sorted(c.name for c in self.protected_categories),
            "soft_budget_per_slot_tokens": self.soft_budget_per_slot_tokens,
            "min_chars_guardrail_ratio": self.min_chars_guardrail_ratio,
        }


@dataclass(frozen=True)
class ReductionContext:
    """Inputs shared by every reduction strategy."""

    max_tokens: int
    policy: BudgetPolicy
    estimate: Callable[[str], int]
    counter: Union[TokenCounter, str, None] = None

    def total(self, sections: Sequence[Section]) -> int:
        return sum(self.estimate(section.text) for section in sections)


@dataclass
class Reduction:
    """Result of one reduction strategy."""

    sections: tuple[Section, ...]
    tokens_freed: int = 0
    trims: list[TrimRecord] = field(default_factory=list)
    actions: list[PolicyAction] = field(default_factory=list)
    dropped: list[DroppedSection] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


Strategy = Callable[[tuple[Section, ...], int, ReductionContext], Reduction]


# =============================================================================
# Drop strategies
# =============================================================================


def _removal(
    sections: tuple[Section, ...],
    victims: Sequence[Section],
    ctx: ReductionContext,
    action: PolicyAction,
    per_section_action: bool = True,
) -> Reduction:
    victim_keys = {victim.key for victim in victims}
    trims: list[TrimRecord] = []
    dropped: list[DroppedSection] = []
    actions: list[PolicyAction] = []
    freed = 0
    for victim in victims:
        tokens = ctx.estimate(victim.text)
        freed += tokens
        trims.append(TrimRecord(victim.key, len(victim.text), tokens))
        dropped.append(DroppedSection(id=victim.categorized_id, reason=action.value))
        if per_section_action:
            actions.append(action)
    if victims and not per_section_action:
        actions.append(action)
    return Reduction(
        sections=tuple(s for s in sections if s.key not in victim_keys),
        tokens_freed=freed,
        trims=trims,
        actions=actions,
        dropped=dropped,
    )


def _droppable(section: Section, ctx: ReductionContext) -> bool:
    return not section.must_keep and section.category not in ctx.policy.protected_categories


def _drop_last_first(
    sections: tuple[Section, ...],
    excess: int,
    ctx: ReductionContext,
    predicate: Callable[[Section], bool],
    action: PolicyAction,
) -> Reduction:
    victims: list[Section] = []
    freed = 0
    for section in reversed(sections):
        if freed >= excess:
            break
        if predicate(section) and _droppable(section, ctx):
            victims.append(section)
            freed += ctx.estimate(section.text)
    return _removal(sections, victims, ctx, action)


def drop_inline_summaries(
    sections: tuple[Section, ...], excess: int, ctx: ReductionContext
) -> Reduction:
    """Drop every inline summary outside the protected categories."""
    victims = [
        s for s in sections
        if s.kind == SectionKind.INLINE_SUMMARY and _droppable(s, ctx)
    ]
    return _removal(
        sections, victims, ctx, PolicyAction.INLINE_SUMMARIES_DROPPED, per_section_action=False
    )


def drop_scenario(sections: tuple[Section, ...], excess: int, ctx: ReductionContext) -> Reduction:
    """Drop SCENARIO sections one at a time, last first."""
    return _drop_last_first(
        sections, excess, ctx,
        lambda s: s.category == Category.SCENARIO,
        DROP_ACTIONS[Category.SCENARIO],
    )


def _entity_id(section: Section) -> str:
    return section.entity.slug if section.entity is not None else section.key


def drop_npcs(sections: tuple[Section, ...], excess: int, ctx: ReductionContext) -> Reduction:
    """Drop whole NPC entities, lowest priority first.

    An entity's priority is the highest slot priority among its sections.
    Ties go to the entity declared last. must_keep sections of a dropped
    entity stay in place.
    """
    groups: dict[str, list[Section]] = {}
    for section in sections:
        if section.category == Category.NPCS and _droppable(section, ctx):
            groups.setdefault(_entity_id(section), []).append(section)

    ranked = sorted(
        enumerate(groups.items()),
        key=lambda item: (max(s.priority for s in item[1][1]), -item[0]),
    )

    victims: list[Section] = []
    freed = 0
    entity_count = 0
    for _, (entity_id, members) in ranked:
        if freed >= excess:
            break
        victims.extend(members)
        freed += sum(ctx.estimate(s.text) for s in members)
        entity_count += 1
        logger.debug(f"Dropping NPC {entity_id} ({len(members)} sections)")

    reduction = _removal(sections, victims, ctx, PolicyAction.NPC_DROPPED, per_section_action=False)
    reduction.actions = [PolicyAction.NPC_DROPPED] * entity_count
    return reduction


def drop_state(sections: tuple[Section, ...], excess: int, ctx: ReductionContext) -> Reduction:
    """Drop non-episodic STATE sections, last first."""
    return _drop_last_first(
        sections, excess, ctx,
        lambda s: s.category == Category.STATE and s.kind != SectionKind.EPISODIC_MEMORY,
        DROP_ACTIONS[Category.STATE],
    )


def drop_input_extras(
    sections: tuple[Section, ...], excess: int, ctx: ReductionContext
) -> Reduction:
    """Drop optional INPUT sections (conversation window extras), last first."""
    return _drop_last_first(
        sections, excess, ctx,
        lambda s: s.category == Category.INPUT and s.kind != SectionKind.EPISODIC_MEMORY,
        DROP_ACTIONS[Category.INPUT],
    )


# =============================================================================
# Volatile-state capping and trimming
# =============================================================================


def _memory_header(text: str) -> str:
    first_line = text.split("\n", 1)[0]
    return first_line if first_line.startswith("#") else "## Memory"


def cap_episodic_memory(
    sections: tuple[Section, ...], excess: int, ctx: ReductionContext
) -> Reduction:
    """Keep the top-N entries of each episodic memory section.

    Entries rank by salience (descending), then timestamp (descending).
    """
    cap = ctx.policy.episodic_cap
    result: list[Section] = []
    trims: list[TrimRecord] = []
    actions: list[PolicyAction] = []
    freed = 0

    for section in sections:
        if (
            section.kind != SectionKind.EPISODIC_MEMORY
            or len(section.entries) <= cap
            or section.category in ctx.policy.protected_categories
        ):
            result.append(section)
            continue

        ranked = sorted(section.entries, key=lambda e: (-e.salience, -e.timestamp))
        kept = tuple(ranked[:cap])
        text = render_memory_entries(kept, header=_memory_header(section.text))
        before = ctx.estimate(section.text)
        after = ctx.estimate(text)

        result.append(replace(section, text=text, entries=kept))
        trims.append(TrimRecord(section.key, max(0, len(section.text) - len(text)), before - after))
        actions.append(PolicyAction.EPISODIC_CAPPED)
        freed += before - after
        logger.debug(f"Capped {section.key} to {len(kept)} of {len(section.entries)} entries")

    return Reduction(sections=tuple(result), tokens_freed=freed, trims=trims, actions=actions)


def _linear_reduction(
    sections: tuple[Section, ...],
    ctx: ReductionContext,
    *,
    protected: frozenset[Category],
    never_remove: frozenset[Category],
    action: PolicyAction,
) -> Reduction:
    outcome = apply_budget(
        sections,
        ctx.max_tokens,
        counter=ctx.counter,
        protected=protected,
        never_remove=never_remove,
        allow_fallback=False,
        soft_budget_per_slot_tokens=ctx.policy.soft_budget_per_slot_tokens,
        min_chars_guardrail_ratio=ctx.policy.min_chars_guardrail_ratio,
    )
    by_key = {section.key: section for section in sections}
    dropped = [
        DroppedSection(id=by_key[key].categorized_id, reason=action.value)
        for key in outcome.removed_keys
    ]
    return Reduction(
        sections=tuple(outcome.sections),
        tokens_freed=outcome.total_tokens_before - outcome.total_tokens_after,
        trims=list(outcome.trims),
        actions=[action] if outcome.trims else [],
        dropped=dropped,
        warnings=list(outcome.warnings),
    )


def proportional_trim(
    sections: tuple[Section, ...], excess: int, ctx: ReductionContext
) -> Reduction:
    """Linear trim over everything outside the protected categories."""
    return _linear_reduction(
        sections,
        ctx,
        protected=ctx.policy.protected_categories,
        never_remove=frozenset(),
        action=PolicyAction.PROPORTIONAL_TRIM,
    )


def truncate_protected(
    sections: tuple[Section, ...], excess: int, ctx: ReductionContext
) -> Reduction:
    """Truncate protected categories without removing any of their sections."""
    unprotected = frozenset(Category) - ctx.policy.protected_categories
    reduction = _linear_reduction(
        sections,
        ctx,
        protected=unprotected,
        never_remove=ctx.policy.protected_categories,
        action=PolicyAction.PROTECTED_TRUNCATED,
    )
    if reduction.trims:
        logger.debug(f"Truncated {len(reduction.trims)} protected sections")
        reduction.warnings.append(BudgetWarning.PROTECTED_TRUNCATED.value)
    return reduction


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    drop_inline_summaries,
    drop_scenario,
    drop_npcs,
    drop_state,
    drop_input_extras,
    cap_episodic_memory,
    proportional_trim,
    truncate_protected,
)


# =============================================================================
# Allocation
# =============================================================================


@dataclass
class Allocation:
    """Outcome of fitting a bundle into a token budget.

    Attributes:
        sections: Surviving sections, still in category order
        total_tokens_before: Estimate before any reduction
        total_tokens_after: Estimate after reductions
        trims: Per-section removal records, in the order applied
        warnings: Warning codes and messages
        policy_actions: Policy tags, in the order applied
        dropped: Sections removed, with reason tags
        max_tokens: Budget the bundle was fitted to
    """

    sections: list[Section]
    total_tokens_before: int
    total_tokens_after: int
    trims: list[TrimRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    policy_actions: list[PolicyAction] = field(default_factory=list)
    dropped: list[DroppedSection] = field(default_factory=list)
    max_tokens: int = 0

    @property
    def within_budget(self) -> bool:
        return self.total_tokens_after <= self.max_tokens

    @property
    def usage_fraction(self) -> float:
        if self.max_tokens <= 0:
            return 0.0 if self.total_tokens_after == 0 else 1.0
        return self.total_tokens_after / self.max_tokens

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "total_tokens_before": self.total_tokens_before,
            "total_tokens_after": self.total_tokens_after,
            "max_tokens": self.max_tokens,
            "within_budget": self.within_budget,
            "trims": [t.to_dict() for t in self.trims],
            "warnings": list(self.warnings),
            "policy_actions": [a.value for a in self.policy_actions],
            "dropped": [d.to_dict() for d in self.dropped],
        }


class BudgetAllocator:
    """Runs the cascading reduction over assembled sections.

    Attributes:
        policy: Injected budget policy
        counter: Optional token counter callable or registered name
        strategies: Reduction strategies in the order they are tried
    """

    def __init__(
        self,
        policy: Optional[BudgetPolicy] = None,
        counter: Union[TokenCounter, str, None] = None,
        *,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.policy = policy or BudgetPolicy()
        self.counter = counter
        self.strategies = tuple(strategies)

    def allocate(self, sections: Sequence[Section], max_tokens: int) -> Allocation:
        """Fit sections into ``max_tokens``.

        Args:
            sections: Assembled sections in category order
            max_tokens: Token budget (negative values are treated as 0)

        Returns:
            Allocation; never raises for budget exhaustion
        """
        max_tokens = max(0, max_tokens)
        estimate = make_estimator(self.counter)
        ctx = ReductionContext(
            max_tokens=max_tokens,
            policy=self.policy,
            estimate=estimate,
            counter=self.counter,
        )

        current = tuple(sections)
        total_before = ctx.total(current)
        allocation = Allocation(
            sections=list(current),
            total_tokens_before=total_before,
            total_tokens_after=total_before,
            max_tokens=max_tokens,
        )

        if total_before <= max_tokens:
            if max_tokens > 0 and total_before / max_tokens >= self.policy.warn_pct:
                logger.debug(
                    f"Bundle at {total_before}/{max_tokens} tokens, above warn threshold"
                )
                allocation.warnings.append(BudgetWarning.POLICY_UNDECIDED.value)
                allocation.policy_actions.append(PolicyAction.SCENARIO_POLICY_UNDECIDED)
            return allocation

        total = total_before
        for strategy in self.strategies:
            excess = total - max_tokens
            if excess <= 0:
                break
            reduction = strategy(current, excess, ctx)
            current = reduction.sections
            total = ctx.total(current)
            allocation.trims.extend(reduction.trims)
            allocation.policy_actions.extend(reduction.actions)
            allocation.dropped.extend(reduction.dropped)
            for warning in reduction.warnings:
                if warning not in allocation.warnings:
                    allocation.warnings.append(warning)

        allocation.sections = list(current)
        allocation.total_tokens_after = total

        if total > max_tokens:
            logger.debug(f"Bundle still over budget after all reductions: {total}/{max_tokens}")
            allocation.warnings.append(BudgetWarning.BUDGET_EXCEEDED.value)

        return allocation


def allocate(
    sections: Sequence[Section],
    max_tokens: int,
    *,
    policy: Optional[BudgetPolicy] = None,
    counter: Union[TokenCounter, str, None] = None,
) -> Allocation:
    """Fit sections into ``max_tokens`` using the default cascade."""
    return BudgetAllocator(policy, counter).allocate(sections, max_tokens)
