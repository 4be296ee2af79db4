"""Bundle core: estimation, compaction, assembly and budget allocation.

Everything in this package is pure and synchronous. Configuration is passed
in explicitly; nothing here reads the environment.
"""

from prompt_bundler.core.allocator import (
    Allocation,
    BudgetAllocator,
    BudgetPolicy,
    allocate,
)
from prompt_bundler.core.assembler import (
    Assembly,
    AssemblyContext,
    ContentProvider,
    assemble,
    assemble_detailed,
    verify_category_order,
)
from prompt_bundler.core.audit import AuditTrail, build_audit
from prompt_bundler.core.bundle import PromptBundle, build_bundle, render_sections
from prompt_bundler.core.compaction import SliceSummary, compact, create_inline_summaries
from prompt_bundler.core.dedup import dedupe, dedupe_sections
from prompt_bundler.core.errors import (
    BundlerError,
    CategoryOrderError,
    MissingCoreCategoryError,
)
from prompt_bundler.core.linear_trim import BudgetResult, LinearSection, apply_budget
from prompt_bundler.core.models import (
    BudgetWarning,
    Category,
    EntityRef,
    MemoryEntry,
    PolicyAction,
    Section,
    SectionKind,
    Slot,
    TrimRecord,
)
from prompt_bundler.core.token_management import (
    estimate_sections_tokens,
    estimate_tokens,
    register_token_counter,
    tiktoken_counter,
)

__all__ = [
    # Models
    "BudgetWarning",
    "Category",
    "EntityRef",
    "MemoryEntry",
    "PolicyAction",
    "Section",
    "SectionKind",
    "Slot",
    "TrimRecord",
    # Errors
    "BundlerError",
    "CategoryOrderError",
    "MissingCoreCategoryError",
    # Estimation
    "estimate_sections_tokens",
    "estimate_tokens",
    "register_token_counter",
    "tiktoken_counter",
    # Compaction
    "SliceSummary",
    "compact",
    "create_inline_summaries",
    # Assembly
    "Assembly",
    "AssemblyContext",
    "ContentProvider",
    "assemble",
    "assemble_detailed",
    "dedupe",
    "dedupe_sections",
    "verify_category_order",
    # Budget
    "Allocation",
    "BudgetAllocator",
    "BudgetPolicy",
    "BudgetResult",
    "LinearSection",
    "allocate",
    "apply_budget",
    # Bundle
    "AuditTrail",
    "PromptBundle",
    "build_audit",
    "build_bundle",
    "render_sections",
]
