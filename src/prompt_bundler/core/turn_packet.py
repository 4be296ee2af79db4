"""Pydantic models for turn packet documents.

A turn packet carries every source document needed to build one prompt:
core instructions, ruleset, modules, world, an optional scenario, an
optional entry point with its NPC roster, live state with episodic memory,
and the player's input with a short conversation window.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Source documents
# =============================================================================


class CoreDoc(BaseModel):
    """Code-owned core instructions. Always required."""

    style: Optional[str] = Field(default=None, description="Narration style")
    safety: list[str] = Field(default_factory=list, description="Safety rules")
    output_rules: Optional[str] = Field(default=None, description="Output format rules")


class SlottedDoc(BaseModel):
    """Versioned document whose content lives in named text slots."""

    id: str = Field(..., description="Document identifier")
    version: str = Field(default="1.0.0")
    slots: dict[str, str] = Field(default_factory=dict)


class RulesetDoc(SlottedDoc):
    """Ruleset document (slots such as ``principles``, ``choice_style``)."""


class WorldDoc(SlottedDoc):
    """World document (slots such as ``tone``, ``taboos``, ``canon``, ``lexicon``)."""


class ModuleDoc(SlottedDoc):
    """Game module (slots ``hints`` and ``actions``, optionally ``module.`` prefixed)."""

    params: dict[str, Any] = Field(default_factory=dict)


class NpcDoc(BaseModel):
    """NPC biography document."""

    id: str = Field(..., description="NPC identifier, e.g. 'kiera'")
    name: Optional[str] = Field(default=None, description="Display name")
    version: Optional[str] = Field(default=None)
    priority: Optional[int] = Field(
        default=None,
        description="Entity priority; higher is dropped later",
    )
    slots: dict[str, str] = Field(default_factory=dict)

    @property
    def slug(self) -> str:
        return f"npc.{self.id}"

    @property
    def display_name(self) -> str:
        return self.name or self.id


class EntryNpc(NpcDoc):
    """NPC bound to an entry point, in the roster's declared sort order."""

    sort_order: int = Field(default=0)


class Reachability(BaseModel):
    reachable_nodes: list[str] = Field(default_factory=list)


class SliceDocs(BaseModel):
    """Raw world/adventure slices used for inline summaries."""

    world: list[str] = Field(default_factory=list)
    adventure: list[str] = Field(default_factory=list)


class ScenarioDoc(SlottedDoc):
    """Scenario document (slots such as ``setup``, ``beats``)."""

    reachability: Optional[Reachability] = None
    npcs: list[NpcDoc] = Field(default_factory=list)
    slices: SliceDocs = Field(default_factory=SliceDocs)


class EntryDoc(BaseModel):
    """Entry point the session started from."""

    id: str = Field(..., description="Entry point identifier")
    start: Optional[str] = Field(default=None, description="Entry start text")
    npcs: list[EntryNpc] = Field(default_factory=list)


class MemoryDoc(BaseModel):
    key: str
    note: str
    salience: float = Field(default=0.0)
    timestamp: int = Field(default=0)


class InputDoc(BaseModel):
    kind: str = Field(default="text", description="Input kind, e.g. 'text' or 'choice'")
    text: str = Field(default="")


class HistoryMessage(BaseModel):
    role: str = Field(..., description="Message role: 'player' or 'narrator'")
    content: str


# =============================================================================
# Turn packet
# =============================================================================


class TurnPacket(BaseModel):
    """All documents needed to build one turn's prompt bundle."""

    core: CoreDoc
    ruleset: Optional[RulesetDoc] = None
    modules: list[ModuleDoc] = Field(default_factory=list)
    world: Optional[WorldDoc] = None
    scenario: Optional[ScenarioDoc] = None
    entry: Optional[EntryDoc] = None
    state: dict[str, Any] = Field(default_factory=dict)
    memory: list[MemoryDoc] = Field(default_factory=list)
    input: InputDoc = Field(default_factory=InputDoc)
    history: list[HistoryMessage] = Field(
        default_factory=list,
        description="Conversation window, oldest first",
    )


def load_turn_packet(path: Union[str, Path]) -> TurnPacket:
    """Read and validate a turn packet JSON file.

    Raises:
        OSError: File cannot be read
        pydantic.ValidationError: Content is not a valid turn packet
    """
    return TurnPacket.model_validate_json(Path(path).read_text(encoding="utf-8"))
