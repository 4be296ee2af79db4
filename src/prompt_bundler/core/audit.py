"""Audit trail for one bundle build.

The audit explains every decision taken for a bundle: which sections made
it in, which were removed and why, which policy actions fired and how full
the budget is. It is built fresh per call and frozen; callers emit it to
their telemetry sink and discard it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from prompt_bundler.core.allocator import Allocation
from prompt_bundler.core.models import DroppedSection


@dataclass(frozen=True)
class TokenEstimate:
    """Final token estimate against the budget; ``pct`` is a fraction."""

    input: int
    budget: int
    pct: float

    def to_dict(self) -> dict[str, Any]:
        return {"input": self.input, "budget": self.budget, "pct": self.pct}


@dataclass(frozen=True)
class AuditTrail:
    """Immutable record of what was included, dropped and why.

    Attributes:
        included: Categorized ids (``"<category>:<key>"``) in bundle order
        dropped: Removed sections with reason tags, in the order removed
        policy: Policy action tags, in the order applied
        token_est: Final estimate against the budget
    """

    included: tuple[str, ...]
    dropped: tuple[DroppedSection, ...]
    policy: tuple[str, ...]
    token_est: TokenEstimate

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "included": list(self.included),
            "dropped": [d.to_dict() for d in self.dropped],
            "policy": list(self.policy),
            "token_est": self.token_est.to_dict(),
        }


def build_audit(
    allocation: Allocation,
    assembly_dropped: Sequence[DroppedSection] = (),
) -> AuditTrail:
    """Build the audit for an allocation.

    Args:
        allocation: Allocator output
        assembly_dropped: Sections removed during assembly (dedup, duplicate keys)

    Returns:
        Frozen AuditTrail
    """
    budget = allocation.max_tokens
    tokens = allocation.total_tokens_after
    pct = round(tokens / budget, 4) if budget > 0 else (0.0 if tokens == 0 else 1.0)
    return AuditTrail(
        included=tuple(section.categorized_id for section in allocation.sections),
        dropped=tuple(assembly_dropped) + tuple(allocation.dropped),
        policy=tuple(action.value for action in allocation.policy_actions),
        token_est=TokenEstimate(input=tokens, budget=budget, pct=pct),
    )
