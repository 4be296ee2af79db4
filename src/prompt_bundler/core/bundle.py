"""Bundle facade: assemble, allocate, audit and render in one call.

Usage:
    from prompt_bundler.core.bundle import build_bundle
    from prompt_bundler.core.providers import providers_for_packet

    bundle = build_bundle(providers_for_packet(packet), context, 6000)
    if not bundle.within_budget:
        ...
    send(bundle.text)
    emit(bundle.audit.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from prompt_bundler.core.allocator import Allocation, BudgetAllocator, BudgetPolicy
from prompt_bundler.core.assembler import AssemblyContext, ContentProvider, assemble_detailed
from prompt_bundler.core.audit import AuditTrail, build_audit
from prompt_bundler.core.models import Section
from prompt_bundler.core.token_management import TokenCounter

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n"


def render_sections(sections: Sequence[Section]) -> str:
    """Join section texts with a blank line between them."""
    return SECTION_SEPARATOR.join(section.text for section in sections if section.text)


@dataclass(frozen=True)
class PromptBundle:
    """Budget-fitted sections ready for the model call.

    Attributes:
        sections: Final sections in category order
        budget: Allocator outcome (token totals, trims, warnings)
        audit: Explanation of every inclusion and removal
        text: Rendered prompt
    """

    sections: tuple[Section, ...]
    budget: Allocation
    audit: AuditTrail
    text: str

    @property
    def within_budget(self) -> bool:
        return self.budget.within_budget

    def to_dict(self, *, include_text: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "sections": [s.to_dict() for s in self.sections],
            "budget": self.budget.to_dict(),
            "audit": self.audit.to_dict(),
            "within_budget": self.within_budget,
        }
        if include_text:
            data["text"] = self.text
        return data


def build_bundle(
    providers: Sequence[ContentProvider],
    context: Optional[AssemblyContext],
    max_tokens: int,
    *,
    policy: Optional[BudgetPolicy] = None,
    counter: Union[TokenCounter, str, None] = None,
) -> PromptBundle:
    """Build a prompt bundle from providers.

    Args:
        providers: Content providers
        context: Per-request flags
        max_tokens: Token budget for the prompt
        policy: Budget policy (defaults to BudgetPolicy())
        counter: Optional token counter callable or registered name

    Returns:
        PromptBundle

    Raises:
        MissingCoreCategoryError: No CORE section was supplied
        CategoryOrderError: Assembly broke the category ordering invariant
    """
    assembly = assemble_detailed(providers, context)
    allocation = BudgetAllocator(policy, counter).allocate(assembly.sections, max_tokens)
    audit = build_audit(allocation, assembly.dropped)

    logger.debug(
        f"Built bundle: {len(allocation.sections)} sections, "
        f"{allocation.total_tokens_after}/{allocation.max_tokens} tokens"
    )
    return PromptBundle(
        sections=tuple(allocation.sections),
        budget=allocation,
        audit=audit,
        text=render_sections(allocation.sections),
    )
