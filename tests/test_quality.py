"""Tests for garbled-text detection and string similarity."""

import pytest

from bibstruct.core.similarity import (
    authors_overlap,
    normalized_edit_similarity,
    split_authors,
    text_similarity,
    token_set_overlap,
)
from bibstruct.extraction.quality import (
    control_ratio,
    is_garbled,
    letter_ratio,
    printable_ratio,
    quality_score,
)

CLEAN = (
    "Citation parsing recovers the structure of scholarly papers. "
    "We evaluate on two hundred documents drawn from several venues."
)


class TestGarbledDetection:
    """Test the character-class heuristics."""

    def test_clean_text_is_not_garbled(self):
        assert not is_garbled(CLEAN)
        assert quality_score(CLEAN) > 0.7

    def test_blank_text_is_garbled(self):
        assert is_garbled("")
        assert is_garbled("   \n\t ")
        assert quality_score("  ") == 0.0

    def test_control_characters_trigger_garbled(self):
        """2% control characters exceeds the 0.5% limit."""
        text = "a" * 98 + "\x01\x02"
        assert control_ratio(text) == pytest.approx(0.02)
        assert is_garbled(text)

    def test_layout_whitespace_is_not_control(self):
        text = CLEAN.replace(" ", "\n").replace(".", ".\t\r")
        assert control_ratio(text) == 0.0
        assert not is_garbled(text)

    def test_symbol_soup_is_garbled(self):
        text = "∂∑∫≈≠ ⊗⊕⊥ ∂∑∫≈≠ ⊗⊕⊥ ab"
        assert letter_ratio(text) < 0.4
        assert printable_ratio(text) < 0.65
        assert is_garbled(text)

    def test_deterministic(self):
        text = "Mixed \x03 text with ∑ symbols and 123 numbers"
        assert is_garbled(text) == is_garbled(text)
        assert quality_score(text) == quality_score(text)


class TestSimilarity:
    """Test string similarity measures."""

    def test_text_similarity_tiers(self):
        assert text_similarity("[12]", " [12] ") == 1.0
        assert text_similarity("12", "[12]") == 0.9
        assert 0.0 <= text_similarity("abc", "xyz") < 0.5

    def test_normalized_edit_similarity(self):
        assert normalized_edit_similarity("", "") == 1.0
        assert normalized_edit_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_token_overlap(self):
        assert token_set_overlap("deep learning", "Deep Learning") == 1.0
        assert token_set_overlap("deep learning", "shallow learning") == pytest.approx(1 / 3)
        assert token_set_overlap("", "anything") == 0.0

    def test_split_authors(self):
        assert split_authors("Smith, Jones and Lee & Park") == ["smith", "jones", "lee", "park"]

    def test_authors_overlap(self):
        assert authors_overlap("Smith", "John Smith, Jane Doe") == 0.5
        assert authors_overlap("Smith and Doe", "Smith, Doe") == 1.0
        assert authors_overlap("", "Smith") == 0.0
