"""In-text citation marker detection with page coordinates.

Link annotations first, pattern matching second:

1. Internal link annotations (goto and named destinations; URI links are
   not citations) grouped per destination, their rectangles merged and
   the text under them checked for a citation shape.
2. For pages where no annotation produced a span, regex search over the
   page text with character positions from pdfplumber.

Pages from the start of the bibliography onward are skipped: entries
there are references, not citations.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF
import pdfplumber

from ..core.geometry import envelope_of_points, from_top_left, merge_boxes
from ..core.models import BoundingBox, CitationSpan, CitationStyle, SpanProvenance, new_id
from ..references.section_parser import is_reference_header

logger = logging.getLogger(__name__)

ANNOTATION_CONFIDENCE = 0.95
NUMERIC_PATTERN_CONFIDENCE = 0.85
AUTHOR_YEAR_PATTERN_CONFIDENCE = 0.75
MAX_MARKER_LENGTH = 50

NUMERIC_CITATION = re.compile(r"\[(\d+(?:\s*[,–-]\s*\d+)*)\]")
AUTHOR_YEAR_CITATION = re.compile(
    r"\(([A-Z][a-z]+(?:\s+(?:et\s+al\.?|(?:&|and)\s+[A-Z][a-z]+))?,\s*(\d{4}[a-z]?))\)"
)

# Shapes accepted for text under a link annotation
NUMERIC_MARKER = re.compile(r"^\[\d+(?:\s*[,–-]\s*\d+)*\]$")
BARE_NUMERIC_MARKER = re.compile(r"^\d{1,4}(?:\s*[,–-]\s*\d{1,4})*$")
AUTHOR_YEAR_MARKER = re.compile(r"^\(?[A-Z][A-Za-z'\-]+.*\d{4}[a-z]?\)?$", re.DOTALL)


def looks_like_citation(text: str) -> bool:
    """Whether text under a link is shaped like a citation marker."""
    text = " ".join(text.split())
    if not text or len(text) > MAX_MARKER_LENGTH:
        return False
    return bool(
        NUMERIC_MARKER.match(text)
        or BARE_NUMERIC_MARKER.match(text)
        or AUTHOR_YEAR_MARKER.match(text)
    )


def detect_style(text: str) -> CitationStyle:
    if re.search(r"\[\d+", text) or BARE_NUMERIC_MARKER.match(text.strip()):
        return CitationStyle.NUMERIC
    if re.search(r"[A-Z][A-Za-z'\-]+.*\d{4}", text):
        return CitationStyle.AUTHOR_YEAR
    return CitationStyle.UNKNOWN


@dataclass
class SpanExtractionResult:
    """Citation spans of one document plus extraction stats."""
    spans: List[CitationSpan] = field(default_factory=list)
    references_start_page: Optional[int] = None
    has_annotations: bool = False
    error: Optional[str] = None

    @property
    def annotation_count(self) -> int:
        return sum(1 for s in self.spans if s.provenance == SpanProvenance.ANNOTATION)

    @property
    def pattern_count(self) -> int:
        return sum(1 for s in self.spans if s.provenance == SpanProvenance.PATTERN)


class CitationSpanExtractor:
    """Finds citation markers in a PDF.

    Args:
        reference_scan_pages: Trailing pages searched for the bibliography header
    """

    def __init__(self, reference_scan_pages: int = 15):
        self.reference_scan_pages = reference_scan_pages

    def extract(self, pdf_path: str, document_id: str) -> SpanExtractionResult:
        """Detect citation spans; never raises, failures land in ``error``."""
        if not Path(pdf_path).exists():
            return SpanExtractionResult(error=f"PDF file not found: {pdf_path}")

        try:
            with fitz.open(pdf_path) as doc:
                references_start = self.detect_references_start(doc)
                annotation_spans = self.extract_from_annotations(doc, document_id, references_start)
            annotated_pages = {span.page_num for span in annotation_spans}
            pattern_spans = self.extract_from_patterns(
                pdf_path, document_id, annotated_pages, references_start
            )
        except Exception as e:
            logger.error(f"Citation extraction failed for {pdf_path}: {e}")
            return SpanExtractionResult(error=f"Extraction failed: {e}")

        result = SpanExtractionResult(
            spans=annotation_spans + pattern_spans,
            references_start_page=references_start,
            has_annotations=bool(annotation_spans),
        )
        logger.info(
            f"✓ Citation spans: {result.annotation_count} from annotations, "
            f"{result.pattern_count} from patterns (references start: {references_start})"
        )
        return result

    def detect_references_start(self, doc: fitz.Document) -> Optional[int]:
        """First page in the trailing window carrying a bibliography header."""
        total = doc.page_count
        first = max(1, total - self.reference_scan_pages + 1)
        for page_num in range(first, total + 1):
            text = doc[page_num - 1].get_text("text", sort=True)
            if any(is_reference_header(line) for line in text.splitlines()):
                return page_num
        return None

    @staticmethod
    def _skip(page_num: int, references_start: Optional[int]) -> bool:
        return references_start is not None and page_num >= references_start

    # Annotation pass

    def extract_from_annotations(
        self,
        doc: fitz.Document,
        document_id: str,
        references_start: Optional[int],
    ) -> List[CitationSpan]:
        spans = []
        named = _named_destinations(doc)

        for index in range(doc.page_count):
            page_num = index + 1
            if self._skip(page_num, references_start):
                continue
            page = doc[index]
            page_height = page.rect.height

            groups: Dict[Tuple[int, int], List[BoundingBox]] = {}
            destinations: Dict[Tuple[int, int], Tuple[int, Optional[float]]] = {}
            for link in page.get_links():
                destination = _resolve_destination(doc, link, named)
                if destination is None:
                    continue
                rect = link.get("from")
                if rect is None or rect.is_empty:
                    continue
                dest_page, dest_y = destination
                key = (dest_page, int(dest_y) if dest_y is not None else 0)
                groups.setdefault(key, []).append(
                    from_top_left(page_num, rect.x0, rect.y0, rect.x1, rect.y1, page_height)
                )
                destinations[key] = destination

            for key, boxes in groups.items():
                merged = merge_boxes(boxes)
                view = merged.to_viewport(page_height)
                text = page.get_textbox(fitz.Rect(view.x1, view.y1, view.x2, view.y2)).strip()
                if not looks_like_citation(text):
                    continue
                dest_page, dest_y = destinations[key]
                spans.append(CitationSpan(
                    id=new_id(),
                    document_id=document_id,
                    page_num=page_num,
                    bbox=merged,
                    raw_text=" ".join(text.split()),
                    style=detect_style(text),
                    provenance=SpanProvenance.ANNOTATION,
                    confidence=ANNOTATION_CONFIDENCE,
                    dest_page=dest_page,
                    dest_y=dest_y,
                ))
        return spans

    # Pattern pass

    def extract_from_patterns(
        self,
        pdf_path: str,
        document_id: str,
        exclude_pages: set,
        references_start: Optional[int],
    ) -> List[CitationSpan]:
        spans = []
        with pdfplumber.open(pdf_path) as pdf:
            for index, page in enumerate(pdf.pages):
                page_num = index + 1
                if page_num in exclude_pages or self._skip(page_num, references_start):
                    continue
                spans.extend(self._match_page(page, page_num, document_id))
        return spans

    def _match_page(self, page, page_num: int, document_id: str) -> List[CitationSpan]:
        spans = []
        passes = (
            (NUMERIC_CITATION, CitationStyle.NUMERIC, NUMERIC_PATTERN_CONFIDENCE),
            (AUTHOR_YEAR_CITATION, CitationStyle.AUTHOR_YEAR, AUTHOR_YEAR_PATTERN_CONFIDENCE),
        )
        for pattern, style, confidence in passes:
            for match in page.search(pattern, regex=True, return_chars=True):
                bbox = _envelope(page_num, match.get("chars") or [match], page.height)
                if bbox is None:
                    continue
                spans.append(CitationSpan(
                    id=new_id(),
                    document_id=document_id,
                    page_num=page_num,
                    bbox=bbox,
                    raw_text=match["text"],
                    style=style,
                    provenance=SpanProvenance.PATTERN,
                    confidence=confidence,
                ))
        return spans


def _envelope(page_num: int, chars: List[dict], page_height: float) -> Optional[BoundingBox]:
    """Min/max envelope of pdfplumber character boxes, in PDF coordinates."""
    if not chars:
        return None
    xs = [float(c[key]) for c in chars for key in ("x0", "x1")]
    # pdfplumber measures top/bottom from the top edge
    ys = [page_height - float(c[key]) for c in chars for key in ("top", "bottom")]
    return envelope_of_points(page_num, xs, ys)


def _named_destinations(doc: fitz.Document) -> Dict[str, dict]:
    try:
        return doc.resolve_names()
    except (AttributeError, RuntimeError, ValueError) as e:
        logger.debug(f"Named destinations unavailable: {e}")
        return {}


def _resolve_destination(
    doc: fitz.Document,
    link: dict,
    named: Dict[str, dict],
) -> Optional[Tuple[int, Optional[float]]]:
    """Resolve a link to ``(page, y)``, y in PDF coordinates when known.

    External (URI, remote file, launch) links resolve to None.
    """
    kind = link.get("kind")
    if kind not in (fitz.LINK_GOTO, fitz.LINK_NAMED):
        return None

    page_index = link.get("page", -1)
    point = link.get("to")
    if (page_index is None or page_index < 0) and kind == fitz.LINK_NAMED:
        name = link.get("nameddest") or link.get("name")
        target = named.get(name) if name else None
        if not target:
            return None
        page_index = target.get("page", -1)
        to = target.get("to")
        point = fitz.Point(to) if to else None
    if page_index is None or page_index < 0 or page_index >= doc.page_count:
        return None

    dest_y = None
    if point is not None and math.isfinite(point.y):
        page_height = doc[page_index].rect.height
        dest_y = page_height - point.y
    return page_index + 1, dest_y
