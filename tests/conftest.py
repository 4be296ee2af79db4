"""
Root pytest configuration and shared fixtures.

Section text is sized in whole tokens of the byte heuristic
(4 ASCII chars per token) so budget arithmetic in tests is exact.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from prompt_bundler.core.models import Category, EntityRef, Section, SectionKind, Slot


def text_of_tokens(tokens: int, fill: str = "x") -> str:
    """ASCII text estimating to exactly ``tokens`` tokens."""
    return fill * (tokens * 4)


def make_section(
    key: str,
    category: Category,
    tokens: int = 10,
    *,
    text: Optional[str] = None,
    slot: Optional[Slot] = None,
    kind: SectionKind = SectionKind.CONTENT,
    entity: Optional[EntityRef] = None,
    source: Optional[Category] = None,
    entries: tuple = (),
) -> Section:
    return Section(
        key=key,
        label=key.upper(),
        text=text if text is not None else text_of_tokens(tokens),
        category=category,
        slot=slot,
        kind=kind,
        entity=entity,
        source=source,
        entries=entries,
    )


class StaticProvider:
    """Provider returning a fixed list of sections."""

    def __init__(self, category: Category, sections, sub_order: int = 0):
        self.category = category
        self.sub_order = sub_order
        self._sections = list(sections)
        self.calls = 0

    def get_sections(self, context):
        self.calls += 1
        return list(self._sections)


@pytest.fixture
def scenario_sections():
    """CORE/RULESET/WORLD at 50 tokens, SCENARIO at 400, five NPCs at 100 (1050 total)."""
    sections = [
        make_section("core.all", Category.CORE, 50),
        make_section("ruleset.principles", Category.RULESET, 50),
        make_section("world.tone", Category.WORLD, 50),
        make_section("scenario.setup", Category.SCENARIO, 400),
    ]
    for name in ("a", "b", "c", "d", "e"):
        entity = EntityRef(slug=f"npc.{name}", source=Category.NPCS)
        sections.append(
            make_section(f"npc.{name}.bio", Category.NPCS, 100, entity=entity)
        )
    return sections


@pytest.fixture
def packet_data() -> Dict[str, Any]:
    """A complete turn packet document."""
    return {
        "core": {
            "style": "Second person, present tense.",
            "safety": ["No graphic violence", "No real-world politics"],
            "output_rules": "Reply with narration followed by up to three choices.",
        },
        "ruleset": {
            "id": "ruleset.classic",
            "slots": {
                "principles": "Fail forward. Every roll changes the story. " * 3,
                "choice_style": "Offer concrete, distinct choices.",
            },
        },
        "modules": [
            {
                "id": "stealth",
                "slots": {
                    "module.hints": "Shadows grant advantage.",
                    "actions": "sneak, hide, distract",
                },
            }
        ],
        "world": {
            "id": "world.mystika",
            "slots": {
                "tone": "Wistful and strange, never grimdark.",
                "taboos": "Nothing that mocks the old gods.",
                "canon": "The moon fell three centuries ago.",
            },
        },
        "scenario": {
            "id": "adv.moonfall",
            "slots": {"setup": "You wake in the crater town of Lunhaven."},
            "reachability": {"reachable_nodes": ["node.crater", "node.market"]},
            "npcs": [
                {
                    "id": "kiera",
                    "name": "Kiera",
                    "version": "1.0.0",
                    "slots": {"bio": "A cartographer who maps the crater."},
                }
            ],
            "slices": {
                "world": ["The crater glows at night. Pilgrims come to see it."],
                "adventure": ["Lunhaven trades in moon glass."],
            },
        },
        "entry": {
            "id": "entry.crater",
            "start": "Dawn over the crater rim.",
            "npcs": [
                {
                    "id": "kiera",
                    "name": "Kiera",
                    "version": "1.0.0",
                    "sort_order": 0,
                    "slots": {"bio": "A cartographer who maps the crater."},
                },
                {
                    "id": "tomas",
                    "name": "Tomas",
                    "sort_order": 1,
                    "slots": {"bio": "A glass merchant.", "persona": "Jovial, greedy."},
                },
            ],
        },
        "state": {"location": "node.crater", "hp": 12},
        "memory": [
            {"key": "m1", "note": "Met Kiera at the rim.", "salience": 0.9, "timestamp": 3},
            {"key": "m2", "note": "Bought a lantern.", "salience": 0.2, "timestamp": 4},
        ],
        "input": {"kind": "text", "text": "I ask Kiera about the map."},
        "history": [
            {"role": "narrator", "content": "The rim is cold."},
            {"role": "player", "content": "I look around."},
        ],
    }


@pytest.fixture
def packet_file(tmp_path: Path, packet_data) -> Path:
    path = tmp_path / "packet.json"
    path.write_text(json.dumps(packet_data), encoding="utf-8")
    return path
