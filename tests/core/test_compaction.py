"""Tests for extractive compaction.

Tests cover:
1. Key point extraction (bullets, numbered lines, sentence fallback)
2. compact() strategies: unchanged, extractive, word truncation
3. Ceiling guarantee and the single-oversized-word boundary
4. Inline slice summaries
"""

from prompt_bundler.core.compaction import (
    InlineSummaries,
    SliceSummary,
    compact,
    create_inline_summaries,
    extract_key_points,
    split_sentences,
)
from prompt_bundler.core.token_management import estimate_tokens


# =============================================================================
# Test: Key Point Extraction
# =============================================================================


class TestExtractKeyPoints:
    """Tests for extract_key_points."""

    def test_bullets_first(self):
        text = "Intro line.\n- alpha\n* beta\n• gamma\n1. numbered"
        assert extract_key_points(text) == ["alpha", "beta", "gamma"]

    def test_bullets_capped_at_five(self):
        text = "\n".join(f"- point {i}" for i in range(8))
        assert extract_key_points(text) == [f"point {i}" for i in range(5)]

    def test_numbered_when_no_bullets(self):
        text = "Steps:\n1. open the gate\n2) light the lamp"
        assert extract_key_points(text) == ["open the gate", "light the lamp"]

    def test_sentence_fallback(self):
        text = "First. Second! Third? Fourth."
        assert extract_key_points(text) == ["First", "Second", "Third"]

    def test_split_sentences_drops_empty(self):
        assert split_sentences("One.. Two!") == ["One", "Two"]


# =============================================================================
# Test: compact()
# =============================================================================


class TestCompact:
    """Tests for compact strategies and metadata."""

    def test_fitting_text_unchanged(self):
        summary = compact("Short text.", 100, name="tiny")
        assert isinstance(summary, SliceSummary)
        assert summary.content == "Short text."
        assert summary.name == "tiny"
        assert summary.metadata["strategy"] == "unchanged"
        assert summary.metadata["compression_ratio"] == 1.0
        assert summary.exceeded_ceiling is False

    def test_empty_and_blank_text(self):
        for text in ("", "   \n\t", None):
            summary = compact(text, 10)
            assert summary.content == ""
            assert summary.token_count == 0
            assert summary.key_points == []
            assert summary.exceeded_ceiling is False

    def test_extractive_leads_with_key_points(self):
        text = (
            "- Keep the map\n- Find Kiera\nThe town sits inside an old crater. "
            "Note: the rim is dangerous for travellers after dark. "
            + "Pilgrims arrive every season to trade moon glass for bread. " * 6
        )
        summary = compact(text, 30)
        assert summary.metadata["strategy"] == "extractive"
        assert summary.content.startswith("Keep the map. Find Kiera")
        assert "Note" not in summary.content
        assert summary.token_count <= 30
        assert summary.key_points == ["Keep the map", "Find Kiera"]

    def test_word_truncation(self):
        text = "word " * 100
        summary = compact(text, 10, preserve_key_points=False)
        assert summary.metadata["strategy"] == "word_truncation"
        assert summary.content.endswith("...")
        assert summary.token_count <= 10
        assert summary.key_points == []
        assert summary.exceeded_ceiling is False

    def test_single_oversized_word_exceeds_ceiling(self):
        word = "x" * 100
        summary = compact(word, 5)
        assert summary.content == word
        assert summary.token_count == 25
        assert summary.exceeded_ceiling is True
        assert summary.metadata["strategy"] == "word_truncation"

    def test_negative_ceiling_treated_as_zero(self):
        summary = compact("abc def", -5)
        assert summary.metadata["max_tokens"] == 0
        assert summary.content == "abc"
        assert summary.exceeded_ceiling is True

    def test_metadata_fields(self):
        text = "Sentence number one is here. " * 20
        summary = compact(text, 20)
        assert summary.metadata["original_tokens"] == estimate_tokens(text)
        assert 0 < summary.metadata["compression_ratio"] < 1
        assert set(summary.to_dict()) == {"name", "content", "token_count", "key_points", "metadata"}

    def test_custom_counter(self):
        def words(text):
            return len(text.split())

        summary = compact("one two three four five six", 3, preserve_key_points=False, counter=words)
        assert words(summary.content) <= 3


# =============================================================================
# Test: Inline Summaries
# =============================================================================


class TestInlineSummaries:
    """Tests for create_inline_summaries."""

    def test_skips_blank_slices(self):
        summaries = create_inline_summaries(["The crater glows.", "  "], ["Trade."])
        assert isinstance(summaries, InlineSummaries)
        assert summaries.world == ["The crater glows."]
        assert summaries.adventure == ["Trade."]

    def test_each_slice_bounded(self):
        long_slice = "The moon fell and the town grew around the crater it left. " * 20
        summaries = create_inline_summaries([long_slice], [], max_tokens=25)
        assert estimate_tokens(summaries.world[0]) <= 25

    def test_to_dict_shape(self):
        data = create_inline_summaries(["a"], ["b"]).to_dict()
        assert data == {"world": {"inline": ["a"]}, "adventure": {"inline": ["b"]}}
