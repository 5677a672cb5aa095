"""Citation span to reference linking.

Each span is tried against an ordered list of strategies and the first
one that yields links wins:

1. structure-engine target (engine marker on the same page whose target
   resolves to a reference), confidence 0.98
2. link annotation destination (references on the destination page)
3. numeric markers ("[1, 3-5]" against reference numbers), 0.95
4. author-year fuzzy match, best candidate only, at most 0.85

Strategies are plain methods returning a list; an empty list means "no
opinion" and hands the span to the next one.
"""
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..core.models import (
    CitationLink,
    CitationSpan,
    CitationStyle,
    EngineCitationSpan,
    LinkMethod,
    SpanProvenance,
    StructuredReference,
)
from ..core.similarity import authors_overlap, text_similarity

logger = logging.getLogger(__name__)

STRUCTURE_TARGET_CONFIDENCE = 0.98
ANNOTATION_SINGLE_CONFIDENCE = 0.95
ANNOTATION_NUMERIC_CONFIDENCE = 0.92
ANNOTATION_OFFSET_CONFIDENCE = 0.75
ANNOTATION_PAGE_ONLY_CONFIDENCE = 0.6
ANNOTATION_NEARBY_CONFIDENCE = 0.5
NUMERIC_CONFIDENCE = 0.95

AUTHOR_YEAR_BASE = 0.5
AUTHOR_YEAR_FIRST_AUTHOR_BONUS = 0.25
AUTHOR_YEAR_ANY_AUTHOR_BONUS = 0.15
AUTHOR_YEAR_YEAR_BONUS = 0.2
AUTHOR_YEAR_MAX = 0.85

ENGINE_SPAN_SIMILARITY = 0.8
ENGINE_AUTHOR_OVERLAP = 0.5
ENGINE_TITLE_SIMILARITY = 0.7

MIN_CITATION_NUMBER = 1
MAX_CITATION_NUMBER = 9999

RANGE_PATTERN = re.compile(r"(\d+)\s*[-–]\s*(\d+)")
AUTHOR_YEAR_PARTS = re.compile(r"([A-Z][a-z]+).*?(\d{4})", re.DOTALL)
XML_ID_NUMBER = re.compile(r"\D*(\d+)")


def parse_numeric(text: str, max_range_span: int = 50) -> List[int]:
    """Reference numbers in a numeric citation, in order, without repeats.

    ``"[1, 3-5, 8]"`` gives ``[1, 3, 4, 5, 8]``. A range counts only when
    start <= end and end - start < max_range_span; single numbers outside
    1..9999 are noise.
    """
    numbers: List[int] = []
    cleaned = re.sub(r"[\[\]()]", "", text or "")
    for part in cleaned.split(","):
        part = part.strip()
        range_match = RANGE_PATTERN.search(part)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            if start <= end and end - start < max_range_span:
                numbers.extend(range(start, end + 1))
            continue
        if part.isdigit():
            number = int(part)
            if MIN_CITATION_NUMBER <= number <= MAX_CITATION_NUMBER:
                numbers.append(number)

    return list(dict.fromkeys(numbers))


def parse_author_year(text: str) -> Optional[Tuple[str, Optional[int]]]:
    """``(Smith et al., 2020)`` -> ``("Smith", 2020)``."""
    match = AUTHOR_YEAR_PARTS.search(text or "")
    if not match:
        return None
    return match.group(1), int(match.group(2))


def author_year_confidence(surname: str, year: Optional[int], reference: StructuredReference) -> float:
    authors = (reference.authors or "").lower()
    surname = surname.lower()
    confidence = AUTHOR_YEAR_BASE
    if surname in authors.split(",")[0]:
        confidence += AUTHOR_YEAR_FIRST_AUTHOR_BONUS
    elif surname in authors:
        confidence += AUTHOR_YEAR_ANY_AUTHOR_BONUS
    if year is not None and reference.year == year:
        confidence += AUTHOR_YEAR_YEAR_BONUS
    return min(confidence, AUTHOR_YEAR_MAX)


def _xml_id(value: Optional[str]) -> Optional[str]:
    return value.lstrip("#") if value else None


class CitationLinker:
    """Links citation spans to the references they cite.

    Args:
        max_range_span: Largest accepted numeric range width ("[1-50]")
    """

    def __init__(self, max_range_span: int = 50):
        self.max_range_span = max_range_span

    def link(
        self,
        spans: Sequence[CitationSpan],
        references: Sequence[StructuredReference],
        references_start_page: Optional[int] = None,
        engine_spans: Optional[Sequence[EngineCitationSpan]] = None,
        engine_references: Optional[Sequence[StructuredReference]] = None,
    ) -> List[CitationLink]:
        """Link every span; spans that cannot be linked yield nothing."""
        if not references:
            return []

        engine_spans = list(engine_spans or [])
        engine_references = list(engine_references or [])
        links: List[CitationLink] = []
        for span in spans:
            try:
                links.extend(self.link_span(
                    span, references, references_start_page, engine_spans, engine_references
                ))
            except Exception as e:
                logger.warning(f"Could not link citation '{span.raw_text}': {e}")

        logger.info(f"✓ Linked {len(links)} citation(s) from {len(spans)} span(s)")
        return links

    def link_span(
        self,
        span: CitationSpan,
        references: Sequence[StructuredReference],
        references_start_page: Optional[int] = None,
        engine_spans: Sequence[EngineCitationSpan] = (),
        engine_references: Sequence[StructuredReference] = (),
    ) -> List[CitationLink]:
        strategies: List[Callable[[], List[CitationLink]]] = [
            lambda: self.link_by_engine_target(span, references, engine_spans, engine_references),
            lambda: self.link_by_annotation(span, references, references_start_page),
            lambda: self.link_by_numeric(span, references),
            lambda: self.link_by_author_year(span, references),
        ]
        for strategy in strategies:
            links = strategy()
            if links:
                return links
        return []

    # Structure engine target

    def link_by_engine_target(
        self,
        span: CitationSpan,
        references: Sequence[StructuredReference],
        engine_spans: Sequence[EngineCitationSpan],
        engine_references: Sequence[StructuredReference],
    ) -> List[CitationLink]:
        if not engine_spans or not engine_references:
            return []

        engine_span = next(
            (
                candidate for candidate in engine_spans
                if candidate.page_num == span.page_num
                and text_similarity(candidate.raw_text, span.raw_text) > ENGINE_SPAN_SIMILARITY
            ),
            None,
        )
        if engine_span is None or engine_span.ref_type != "biblio":
            return []

        target = _xml_id(engine_span.target_xml_id)
        if not target:
            return []
        engine_ref = next(
            (ref for ref in engine_references if _xml_id(ref.external_ref_id) == target),
            None,
        )
        if engine_ref is None:
            return []

        return [
            CitationLink(span.id, ref.id, LinkMethod.STRUCTURE_TARGET, STRUCTURE_TARGET_CONFIDENCE)
            for ref in self.match_engine_reference(engine_ref, references)
        ]

    def match_engine_reference(
        self,
        engine_ref: StructuredReference,
        references: Sequence[StructuredReference],
    ) -> List[StructuredReference]:
        """References corresponding to an engine reference.

        Same id first, then the reference number (GROBID ids count from
        zero: ``b12`` is the 13th entry), then author/year/title overlap.
        """
        target = _xml_id(engine_ref.external_ref_id)
        same_id = [ref for ref in references if target and _xml_id(ref.external_ref_id) == target]
        if same_id:
            return same_id[:1]

        number = engine_ref.number
        if number is None and target:
            match = XML_ID_NUMBER.match(target)
            number = int(match.group(1)) + 1 if match else None
        if number is not None:
            by_number = [ref for ref in references if ref.number == number]
            if by_number:
                return by_number[:1]

        candidates = []
        for ref in references:
            author_match = bool(
                engine_ref.authors and ref.authors
                and authors_overlap(engine_ref.authors, ref.authors) > ENGINE_AUTHOR_OVERLAP
            )
            year_match = engine_ref.year is not None and engine_ref.year == ref.year
            title_match = bool(
                engine_ref.title and ref.title
                and text_similarity(engine_ref.title, ref.title) > ENGINE_TITLE_SIMILARITY
            )
            if author_match or year_match or title_match:
                candidates.append(ref)
        return candidates

    # Annotation destination

    def link_by_annotation(
        self,
        span: CitationSpan,
        references: Sequence[StructuredReference],
        references_start_page: Optional[int] = None,
    ) -> List[CitationLink]:
        if span.provenance != SpanProvenance.ANNOTATION or span.dest_page is None:
            return []
        dest_page = span.dest_page
        # Links into the body point at figures, tables or sections
        if references_start_page is not None and dest_page < references_start_page:
            return []

        on_page = [ref for ref in references if ref.page_num == dest_page]
        if not on_page:
            nearby = [
                ref for ref in references
                if ref.page_num is not None and abs(ref.page_num - dest_page) <= 1
            ]
            # With no candidate at all, a numeric hit anywhere still counts as offset
            numeric = self.link_by_numeric(span, references)
            if numeric:
                return self._relabel(numeric, LinkMethod.ANNOTATION_NUMERIC, ANNOTATION_OFFSET_CONFIDENCE)
            return [
                CitationLink(span.id, ref.id, LinkMethod.ANNOTATION_PAGE_ONLY, ANNOTATION_NEARBY_CONFIDENCE)
                for ref in nearby
            ]

        if len(on_page) == 1:
            return [CitationLink(span.id, on_page[0].id, LinkMethod.ANNOTATION_GOTO, ANNOTATION_SINGLE_CONFIDENCE)]

        numeric = self.link_by_numeric(span, references)
        if numeric:
            page_ids = {ref.id for ref in on_page}
            inside = [link for link in numeric if link.reference_id in page_ids]
            if inside:
                return self._relabel(inside, LinkMethod.ANNOTATION_NUMERIC, ANNOTATION_NUMERIC_CONFIDENCE)
            return self._relabel(numeric, LinkMethod.ANNOTATION_NUMERIC, ANNOTATION_OFFSET_CONFIDENCE)

        return [
            CitationLink(span.id, ref.id, LinkMethod.ANNOTATION_PAGE_ONLY, ANNOTATION_PAGE_ONLY_CONFIDENCE)
            for ref in on_page
        ]

    @staticmethod
    def _relabel(links: List[CitationLink], method: LinkMethod, confidence: float) -> List[CitationLink]:
        return [CitationLink(link.citation_span_id, link.reference_id, method, confidence) for link in links]

    # Numeric

    def link_by_numeric(
        self,
        span: CitationSpan,
        references: Sequence[StructuredReference],
    ) -> List[CitationLink]:
        if span.style != CitationStyle.NUMERIC:
            return []
        by_number: Dict[int, StructuredReference] = {}
        for ref in references:
            if ref.number is not None:
                by_number.setdefault(ref.number, ref)
        return [
            CitationLink(span.id, by_number[number].id, LinkMethod.NUMERIC, NUMERIC_CONFIDENCE)
            for number in parse_numeric(span.raw_text, self.max_range_span)
            if number in by_number
        ]

    # Author-year

    def link_by_author_year(
        self,
        span: CitationSpan,
        references: Sequence[StructuredReference],
    ) -> List[CitationLink]:
        if span.style != CitationStyle.AUTHOR_YEAR:
            return []
        parsed = parse_author_year(span.raw_text)
        if parsed is None:
            return []
        surname, year = parsed

        candidates = [
            ref for ref in references
            if ref.authors and surname.lower() in ref.authors.lower()
            and (year is None or ref.year == year)
        ]
        if not candidates:
            return []

        best = max(candidates, key=lambda ref: author_year_confidence(surname, year, ref))
        return [CitationLink(
            span.id, best.id, LinkMethod.AUTHOR_YEAR_FUZZY, author_year_confidence(surname, year, best)
        )]
