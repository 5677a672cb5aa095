"""Approximate string matching used by citation linking.

Scores are in [0, 1]. Edit distance comes from rapidfuzz; everything else
is token bookkeeping on lower-cased, trimmed text.
"""
import re
from typing import List, Set

from rapidfuzz.distance import Levenshtein

# Separators between author names: commas, "and", "&"
AUTHOR_SEPARATORS = re.compile(r",|\s+and\s+|\s+&\s+")
TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)

EXACT_MATCH_SCORE = 1.0
CONTAINMENT_SCORE = 0.9


def _clean(text: str) -> str:
    return (text or "").strip().lower()


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    return Levenshtein.distance(a, b)


def normalized_edit_similarity(a: str, b: str) -> float:
    """1 - distance / max(len) on cleaned strings; 1.0 for two empty strings."""
    a, b = _clean(a), _clean(b)
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / max_len


def text_similarity(a: str, b: str) -> float:
    """Similarity of two short texts such as citation markers or titles.

    Exact match (case-insensitive, trimmed) scores 1.0, containment of one
    in the other scores 0.9, anything else falls back to normalised edit
    similarity.
    """
    a, b = _clean(a), _clean(b)
    if a == b:
        return EXACT_MATCH_SCORE
    if a and b and (a in b or b in a):
        return CONTAINMENT_SCORE
    return normalized_edit_similarity(a, b)


def tokens(text: str) -> Set[str]:
    """Lower-cased word tokens of a text."""
    return set(TOKEN_PATTERN.findall(_clean(text)))


def token_set_overlap(a: str, b: str) -> float:
    """Jaccard overlap of the word-token sets of two texts."""
    ta, tb = tokens(a), tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def split_authors(authors: str) -> List[str]:
    """Split an author string on commas, 'and' and '&'."""
    return [
        name.strip()
        for name in AUTHOR_SEPARATORS.split(_clean(authors))
        if name.strip()
    ]


def authors_overlap(a: str, b: str) -> float:
    """Fraction of author names shared by two author strings.

    A name counts as shared when either string contains the other, so
    "smith" matches "john smith". The count is divided by the longer list.
    """
    names_a, names_b = split_authors(a), split_authors(b)
    if not names_a or not names_b:
        return 0.0
    shared = sum(
        1 for name_a in names_a
        if any(name_a in name_b or name_b in name_a for name_b in names_b)
    )
    return shared / max(len(names_a), len(names_b))
