"""Data models for bibstruct.

Everything the pipeline produces is a plain dataclass so it can be
persisted by any store and compared in tests. Records are created once per
processing pass and replaced wholesale on re-processing.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any

from ..exceptions import ValidationError


def new_id() -> str:
    """Generate a new record id."""
    return str(uuid.uuid4())


class ExtractionMethod(Enum):
    """How the text of a page was obtained."""
    NATIVE = "native"  # PyMuPDF layout-aware extraction
    EXTERNAL_TOOL = "external_tool"  # poppler pdftotext
    OCR = "ocr"
    HYBRID = "hybrid"  # document-level only: pages disagree


class ReferenceProvenance(Enum):
    """Which path produced a structured reference."""
    STRUCTURE_ENGINE = "structure_engine"
    LLM_FALLBACK = "llm_fallback"
    SECTION_HEURISTIC = "section_heuristic"


class CitationStyle(Enum):
    """Shape of an in-text citation marker."""
    NUMERIC = "numeric"
    AUTHOR_YEAR = "author_year"
    UNKNOWN = "unknown"


class SpanProvenance(Enum):
    """Which pass detected a citation span."""
    ANNOTATION = "annotation"
    PATTERN = "pattern"


class LinkMethod(Enum):
    """Strategy that produced a citation link."""
    STRUCTURE_TARGET = "structure_target"
    ANNOTATION_GOTO = "annotation_goto"
    ANNOTATION_NUMERIC = "annotation_numeric"
    ANNOTATION_PAGE_ONLY = "annotation_page_only"
    NUMERIC = "numeric"
    AUTHOR_YEAR_FUZZY = "author_year_fuzzy"


class ProcessingState(Enum):
    """Lifecycle of a document's preprocessing run."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Outcome(Enum):
    """Terminal outcome of the orchestrator state machine."""
    SUCCESS = "success"  # structure engine satisfied the document
    PARTIAL = "partial"  # a fallback tier satisfied it, or text only
    FAILED = "failed"  # no usable text at all


class StepStatus(Enum):
    """Status of an optional pipeline step (engine, OCR)."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in PDF coordinates (origin bottom-left).

    Attributes:
        page: Page number (1-indexed)
        x1: Left edge
        y1: Bottom edge
        x2: Right edge
        y2: Top edge
    """
    page: int
    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self):
        if self.x2 < self.x1 or self.y2 < self.y1:
            raise ValidationError(
                f"Inverted bounding box on page {self.page}: "
                f"({self.x1}, {self.y1}, {self.x2}, {self.y2})"
            )

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_viewport(self, page_height: float) -> "BoundingBox":
        """Convert to viewport coordinates (origin top-left).

        The transform is its own inverse, so applying it twice with the
        same page height returns the original box.
        """
        return BoundingBox(
            page=self.page,
            x1=self.x1,
            y1=page_height - self.y2,
            x2=self.x2,
            y2=page_height - self.y1,
        )

    def from_viewport(self, page_height: float) -> "BoundingBox":
        """Convert a viewport box (origin top-left) back to PDF coordinates."""
        return self.to_viewport(page_height)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            page=int(data["page"]),
            x1=float(data["x1"]),
            y1=float(data["y1"]),
            x2=float(data["x2"]),
            y2=float(data["y2"]),
        )


@dataclass(frozen=True)
class PageText:
    """Extracted text for a single page with quality metadata.

    Attributes:
        page_num: Page number (1-indexed)
        text: Extracted text
        method: Which extraction layer produced the text
        is_garbled: Whether the text failed the garbled-text heuristic
        quality_score: Letter ratio of the text, in [0, 1]
        ocr_confidence: Estimated OCR confidence when method is OCR
    """
    page_num: int
    text: str
    method: ExtractionMethod
    is_garbled: bool = False
    quality_score: float = 1.0
    ocr_confidence: Optional[float] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def is_acceptable_quality(self) -> bool:
        return not self.is_garbled and self.quality_score >= 0.5


@dataclass
class DocumentText:
    """Result of extracting every page of a document.

    Attributes:
        pages: Per-page results ordered by page number
        total_pages: Number of pages in the PDF
        overall_method: Single method if all pages agree, otherwise HYBRID
        average_quality: Mean page quality score
        pdf_path: The PDF actually extracted (may be an alternate-source copy)
        ocr_status: Whether OCR was used for any page
    """
    pages: List[PageText]
    total_pages: int
    overall_method: ExtractionMethod
    average_quality: float
    pdf_path: str
    ocr_status: StepStatus = StepStatus.SKIPPED

    @property
    def full_text(self) -> str:
        return "\n\n".join(page.text for page in self.pages)

    @property
    def method_stats(self) -> Dict[ExtractionMethod, int]:
        stats: Dict[ExtractionMethod, int] = {}
        for page in self.pages:
            stats[page.method] = stats.get(page.method, 0) + 1
        return stats

    @property
    def has_usable_text(self) -> bool:
        return any(page.text.strip() for page in self.pages)


@dataclass
class ReferenceEntry:
    """A bibliography entry found by the heuristic section parser.

    Attributes:
        number: 1-based position in the bibliography
        raw_text: Full text of the entry
        authors: Author segment, if it could be split off
        title: Title segment (the whole entry when nothing else works)
        venue: Venue segment
        year: Last 19xx/20xx year in the entry
        doi: DOI found anywhere in the entry
        page_num: Page where the entry starts
        id: Record id
    """
    number: int
    raw_text: str
    authors: Optional[str] = None
    title: Optional[str] = None
    venue: Optional[str] = None
    year: Optional[int] = None
    doi: Optional[str] = None
    page_num: Optional[int] = None
    id: str = field(default_factory=new_id)


@dataclass
class StructuredReference:
    """A bibliography entry produced by the structure engine, the LLM fallback
    or the heuristic section parser.

    Attributes:
        id: Record id
        document_id: Owning document
        raw_text: Normalised raw text of the entry
        provenance: Which extraction path produced the entry
        confidence: Trust in the extraction, in [0, 1]
        number: 1-based index when known
        external_ref_id: Engine-side id (e.g. ``b12`` or ``llm-ref-12``)
        authors: Comma-separated author names
        title: Title
        venue: Journal / proceedings
        year: Publication year (1900-2099)
        doi: Validated DOI
        page_num: Page where the entry appears
        bboxes: Entry location, when the engine supplied coordinates
    """
    id: str
    document_id: str
    raw_text: str
    provenance: ReferenceProvenance
    confidence: float
    number: Optional[int] = None
    external_ref_id: Optional[str] = None
    authors: Optional[str] = None
    title: Optional[str] = None
    venue: Optional[str] = None
    year: Optional[int] = None
    doi: Optional[str] = None
    page_num: Optional[int] = None
    bboxes: List[BoundingBox] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "raw_text": self.raw_text,
            "provenance": self.provenance.value,
            "confidence": self.confidence,
            "number": self.number,
            "external_ref_id": self.external_ref_id,
            "authors": self.authors,
            "title": self.title,
            "venue": self.venue,
            "year": self.year,
            "doi": self.doi,
            "page_num": self.page_num,
            "bboxes": [b.to_dict() for b in self.bboxes],
        }


@dataclass
class CitationSpan:
    """An in-text citation marker located on a page.

    Attributes:
        id: Record id
        document_id: Owning document
        page_num: Page the marker is on
        bbox: Marker location in PDF coordinates
        raw_text: Marker text, e.g. ``[3-5]`` or ``(Smith et al., 2020)``
        style: Numeric / author-year / unknown
        provenance: Annotation or pattern pass
        confidence: Detection confidence
        dest_page: Jump-target page (annotation spans only)
        dest_y: Jump-target y position (annotation spans only)
    """
    id: str
    document_id: str
    page_num: int
    bbox: BoundingBox
    raw_text: str
    style: CitationStyle
    provenance: SpanProvenance
    confidence: float
    dest_page: Optional[int] = None
    dest_y: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "page_num": self.page_num,
            "bbox": self.bbox.to_dict(),
            "raw_text": self.raw_text,
            "style": self.style.value,
            "provenance": self.provenance.value,
            "confidence": self.confidence,
            "dest_page": self.dest_page,
            "dest_y": self.dest_y,
        }


@dataclass
class EngineCitationSpan:
    """An in-text reference marker reported by the structure engine.

    Attributes:
        id: Record id
        document_id: Owning document
        page_num: Page the marker is on
        raw_text: Marker text
        ref_type: 'biblio', 'figure' or 'formula'
        xml_id: Engine-side id of the marker
        target_xml_id: Engine-side id of the target (e.g. ``#b12``)
        confidence: Engine confidence
        bboxes: Marker boxes on this page
    """
    id: str
    document_id: str
    page_num: int
    raw_text: str
    ref_type: str
    xml_id: Optional[str] = None
    target_xml_id: Optional[str] = None
    confidence: float = 0.95
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass(frozen=True)
class CitationLink:
    """A resolved link from a citation span to a reference.

    Attributes:
        citation_span_id: Linked span
        reference_id: Linked reference
        method: Strategy that produced the link
        confidence: Trust in the link, in [0, 1]
    """
    citation_span_id: str
    reference_id: str
    method: LinkMethod
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "citation_span_id": self.citation_span_id,
            "reference_id": self.reference_id,
            "method": self.method.value,
            "confidence": self.confidence,
        }


@dataclass
class TierAttempt:
    """One orchestrator tier attempt, kept for auditing."""
    tier: str
    succeeded: bool
    elapsed_ms: float
    detail: str = ""


@dataclass
class ProcessingStatus:
    """Preprocessing status for one document.

    Attributes:
        document_id: Document id
        state: Lifecycle state
        outcome: Terminal outcome once COMPLETED / FAILED
        started_at: When the current run started
        completed_at: When the current run finished
        total_pages: Page count of the processed PDF
        extraction_method: Overall page extraction method
        quality_score: Average page quality
        engine_status: Whether the structure engine satisfied the document
        ocr_status: Whether OCR was needed and worked
        reference_provenance: Provenance of the persisted references
        reference_count: Number of persisted references
        citation_span_count: Number of persisted citation spans
        pdf_path: PDF actually processed
        error_message: Failure description
        attempts: Tier attempts of the current run
    """
    document_id: str
    state: ProcessingState = ProcessingState.PENDING
    outcome: Optional[Outcome] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_pages: int = 0
    extraction_method: Optional[ExtractionMethod] = None
    quality_score: Optional[float] = None
    engine_status: Optional[StepStatus] = None
    ocr_status: Optional[StepStatus] = None
    reference_provenance: Optional[ReferenceProvenance] = None
    reference_count: int = 0
    citation_span_count: int = 0
    pdf_path: Optional[str] = None
    error_message: Optional[str] = None
    attempts: List[TierAttempt] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.state == ProcessingState.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_pages": self.total_pages,
            "extraction_method": self.extraction_method.value if self.extraction_method else None,
            "quality_score": self.quality_score,
            "engine_status": self.engine_status.value if self.engine_status else None,
            "ocr_status": self.ocr_status.value if self.ocr_status else None,
            "reference_provenance": (
                self.reference_provenance.value if self.reference_provenance else None
            ),
            "reference_count": self.reference_count,
            "citation_span_count": self.citation_span_count,
            "pdf_path": self.pdf_path,
            "error_message": self.error_message,
            "attempts": [asdict(a) for a in self.attempts],
        }
