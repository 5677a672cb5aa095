"""Garbled-text detection and page quality scoring.

Publisher PDFs with broken font-to-Unicode maps extract as control
characters and symbol soup. These checks are cheap character-class ratios,
pure and deterministic for a given string.
"""
import unicodedata

# Empirically tuned thresholds
MAX_CONTROL_RATIO = 0.005
MIN_LETTER_RATIO = 0.40
MIN_PRINTABLE_RATIO = 0.65

COMMON_PUNCTUATION = frozenset(".,;:-–—()[]{}/\\\"'?!")

# Line structure is not a symptom of a broken font map
LAYOUT_WHITESPACE = frozenset("\t\n\r")


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return (code <= 0x1F or code == 0x7F) and ch not in LAYOUT_WHITESPACE


def _is_printable(ch: str) -> bool:
    return ch.isalnum() or ch.isspace() or ch in COMMON_PUNCTUATION


def control_ratio(text: str) -> float:
    """Fraction of C0 control characters (tab/newline/CR excluded)."""
    if not text:
        return 0.0
    return sum(1 for ch in text if _is_control(ch)) / len(text)


def letter_ratio(text: str) -> float:
    """Fraction of alphabetic characters."""
    if not text:
        return 0.0
    return sum(1 for ch in text if ch.isalpha()) / len(text)


def printable_ratio(text: str) -> float:
    """Fraction of alphanumeric, whitespace and common punctuation characters."""
    if not text:
        return 0.0
    return sum(1 for ch in text if _is_printable(ch)) / len(text)


def is_garbled(text: str) -> bool:
    """Whether extracted text looks like a broken font map.

    Blank text counts as garbled: there is nothing usable on the page.
    """
    if not text or not text.strip():
        return True
    text = unicodedata.normalize("NFC", text)
    return (
        control_ratio(text) > MAX_CONTROL_RATIO
        or letter_ratio(text) < MIN_LETTER_RATIO
        or printable_ratio(text) < MIN_PRINTABLE_RATIO
    )


def quality_score(text: str) -> float:
    """Letter ratio clamped to [0, 1]; 0.0 for blank text."""
    if not text or not text.strip():
        return 0.0
    return min(1.0, max(0.0, letter_ratio(unicodedata.normalize("NFC", text))))
