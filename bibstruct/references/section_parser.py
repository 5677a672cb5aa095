"""Heuristic bibliography detection and segmentation.

Used when the structure engine is not available: find the "References"
header near the end of the document, cut the section into numbered
entries and make a best-effort split of each entry into authors, title
and venue.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .fields import find_doi, find_year
from ..core.models import PageText, ReferenceEntry, ReferenceProvenance, StructuredReference, new_id

logger = logging.getLogger(__name__)


def _spaced(word: str) -> str:
    """Pattern for a word typeset with letter spacing, e.g. ``R E F E R E N C E S``."""
    return r"\s*".join(re.escape(ch) for ch in word)


_HEADER_WORDS = (
    r"references?",
    r"bibliography",
    r"works\s+cited",
    r"literature\s+cited",
    r"cited\s+literature",
    r"references\s+and\s+notes",
    r"reference\s+list",
    _spaced("references"),
    _spaced("bibliography"),
)
_SECTION_NUMBER = r"(?:(?:\d+|[ivxlc]+|[a-z])\.?\s+)?"

HEADER_PATTERNS = [
    re.compile(rf"^{_SECTION_NUMBER}(?:{word})\s*:?$", re.IGNORECASE)
    for word in _HEADER_WORDS
]

# Tested in order; the first match starts a new entry. Entry numbers have at
# most three digits so a wrapped line opening with a year stays in its entry.
ENTRY_START_PATTERNS = [
    re.compile(r"^\[(\d{1,3})\]\s*(.*)$"),
    re.compile(r"^(\d{1,3})\.\s+(.*)$"),
    re.compile(r"^\((\d{1,3})\)\s*(.*)$"),
    re.compile(r"^(\d{1,3})\s+(\S.*)$"),
]

# Material after the bibliography
SECTION_END_PATTERNS = [
    re.compile(r"^(?:[A-Z]\.?\s+)?appendix\b.*$", re.IGNORECASE),
    re.compile(r"^(?:supplementary|supplemental)\s+material\s*$", re.IGNORECASE),
]

# Confidence of references segmented from the section text
HEURISTIC_CONFIDENCE = 0.6

PAGE_NUMBER_LINE = re.compile(r"^\d{1,4}$")
SENTENCE_PERIOD = re.compile(r"\.(?=\s|$)")
QUOTED_TITLE = re.compile(r'[“"]([^”"]{3,})[”"]')


@dataclass
class ReferenceSection:
    """A located bibliography.

    Attributes:
        start_page: Page the header was found on
        header: The header line as printed
        text: Section text after the header
        entries: Numbered entries found in the section (may be empty for
            unnumbered bibliographies)
    """
    start_page: int
    header: str
    text: str
    entries: List[ReferenceEntry] = field(default_factory=list)

    def as_llm_input(self) -> str:
        """Entries formatted as ``[n] raw`` blocks, or the raw section text."""
        if self.entries:
            return format_entries(self.entries)
        return self.text

    def to_references(self, document_id: str) -> List[StructuredReference]:
        """Numbered entries as persisted references."""
        return [
            StructuredReference(
                id=new_id(),
                document_id=document_id,
                raw_text=entry.raw_text,
                provenance=ReferenceProvenance.SECTION_HEURISTIC,
                confidence=HEURISTIC_CONFIDENCE,
                number=entry.number,
                external_ref_id=f"section-ref-{entry.number}",
                authors=entry.authors,
                title=entry.title,
                venue=entry.venue,
                year=entry.year,
                doi=entry.doi,
                page_num=entry.page_num,
            )
            for entry in self.entries
        ]


def format_entries(entries: Sequence[ReferenceEntry]) -> str:
    return "\n\n".join(f"[{entry.number}] {entry.raw_text}" for entry in entries)


def is_reference_header(line: str) -> bool:
    line = line.strip()
    return bool(line) and any(p.match(line) for p in HEADER_PATTERNS)


def match_entry_start(line: str) -> Optional[Tuple[int, str]]:
    """Return ``(marker_number, remainder)`` if the line starts a new entry."""
    for pattern in ENTRY_START_PATTERNS:
        match = pattern.match(line)
        if match:
            return int(match.group(1)), match.group(2).strip()
    return None


def split_entry(raw: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Best-effort ``(authors, title, venue)`` split of one entry.

    Period-delimited "Authors. Title. Venue, year." is preferred; then a
    quoted title; otherwise the whole entry is the title.
    """
    raw = raw.strip()
    if not raw:
        return None, None, None

    periods = len(SENTENCE_PERIOD.findall(raw))
    if periods >= 2:
        segments = [s.strip() for s in SENTENCE_PERIOD.split(raw) if s.strip()]
        if periods >= 3 and len(segments) >= 3:
            return segments[0], segments[1], ". ".join(segments[2:])
        if len(segments) >= 2:
            return segments[0], segments[1], None

    quoted = QUOTED_TITLE.search(raw)
    if quoted:
        authors = raw[:quoted.start()].strip(" ,.") or None
        venue = raw[quoted.end():].strip(" ,.") or None
        return authors, quoted.group(1).strip(" ,."), venue

    return None, raw, None


class ReferenceSectionParser:
    """Locates and segments the bibliography of a document.

    Args:
        scan_pages: Number of trailing pages searched for the header
    """

    def __init__(self, scan_pages: int = 15):
        self.scan_pages = scan_pages

    def find_section(self, pages: Sequence[PageText]) -> Optional[ReferenceSection]:
        """Find the bibliography in the last ``scan_pages`` pages.

        Returns:
            The section with its entries, or None when no header is found
        """
        ordered = sorted(pages, key=lambda p: p.page_num)
        window = ordered[-self.scan_pages:] if self.scan_pages > 0 else []

        for index, page in enumerate(window):
            lines = page.text.splitlines()
            for line_no, line in enumerate(lines):
                if not is_reference_header(line):
                    continue
                logger.info(f"Found bibliography header '{line.strip()}' on page {page.page_num}")
                tagged = [(page.page_num, l) for l in lines[line_no + 1:]]
                for later in window[index + 1:]:
                    tagged.extend((later.page_num, l) for l in later.text.splitlines())
                tagged = self._truncate_at_section_end(tagged)
                entries = self.segment(tagged)
                logger.info(f"✓ Parsed {len(entries)} numbered reference entries")
                return ReferenceSection(
                    start_page=page.page_num,
                    header=line.strip(),
                    text="\n".join(l for _, l in tagged).strip(),
                    entries=entries,
                )

        logger.info("No bibliography header found")
        return None

    def parse(self, pages: Sequence[PageText]) -> List[ReferenceEntry]:
        """Entries of the bibliography, empty when none is found."""
        section = self.find_section(pages)
        return section.entries if section else []

    @staticmethod
    def _truncate_at_section_end(tagged: List[Tuple[int, str]]) -> List[Tuple[int, str]]:
        for position, (_, line) in enumerate(tagged):
            if any(p.match(line.strip()) for p in SECTION_END_PATTERNS):
                return tagged[:position]
        return tagged

    def segment(self, tagged_lines: Sequence[Tuple[int, str]]) -> List[ReferenceEntry]:
        """Cut ``(page_num, line)`` pairs into numbered entries.

        Lines before the first entry marker are ignored. Entries are
        numbered by their position in the bibliography.
        """
        entries: List[ReferenceEntry] = []
        current: List[str] = []
        current_page: Optional[int] = None

        def flush():
            raw = _join_lines(current)
            if raw:
                entries.append(self._build_entry(len(entries) + 1, raw, current_page))

        for page_num, line in tagged_lines:
            line = line.strip()
            if not line or PAGE_NUMBER_LINE.match(line):
                continue
            started = match_entry_start(line)
            if started is not None:
                if current_page is not None:
                    flush()
                current = [started[1]]
                current_page = page_num
            elif current_page is not None:
                current.append(line)

        if current_page is not None:
            flush()
        return entries

    @staticmethod
    def _build_entry(number: int, raw: str, page_num: Optional[int]) -> ReferenceEntry:
        authors, title, venue = split_entry(raw)
        return ReferenceEntry(
            number=number,
            raw_text=raw,
            authors=authors,
            title=title,
            venue=venue,
            year=find_year(raw),
            doi=find_doi(raw),
            page_num=page_num,
        )


def _join_lines(lines: Sequence[str]) -> str:
    """Join wrapped lines, repairing words hyphenated across a line break."""
    text = ""
    for line in lines:
        if not line:
            continue
        if text.endswith("-") and line[:1].islower():
            text = text[:-1] + line
        elif text:
            text = f"{text} {line}"
        else:
            text = line
    return re.sub(r"\s+", " ", text).strip()
