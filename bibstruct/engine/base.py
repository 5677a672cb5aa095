"""Structure engine interface and its document model.

A structure engine parses a PDF into header metadata, body elements
(citation markers, figures, formulas) and the bibliography, each with page
coordinates. ``StructuredDocument`` holds that output before it is turned
into persisted records for one document.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.geometry import group_by_page
from ..core.models import (
    BoundingBox,
    EngineCitationSpan,
    ReferenceProvenance,
    StructuredReference,
    new_id,
)
from ..exceptions import StructureEngineFailure

# Confidence of records produced by the structure engine
ENGINE_CONFIDENCE = 0.95

CITATION_REF_TYPES = ("biblio", "figure", "formula")

# GROBID `<ref type=..>` values mapped onto marker types
TEI_REF_TYPES = {"bibr": "biblio", "biblio": "biblio", "figure": "figure", "formula": "formula"}


def normalize_reference_text(text: str) -> str:
    """Clean raw engine reference text.

    Joins words hyphenated across line breaks, drops a trailing list of
    in-paper back-reference pages ("... 2013. 2, 6, 7") and collapses
    whitespace.
    """
    text = re.sub(r"(\w)-\s*\n\s*(\w)", r"\1\2", text or "")
    text = re.sub(r"\.\s+(?:\d{1,3}\s*,\s*)*\d{1,3}\s*$", ".", text)
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class EngineAuthor:
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    affiliation: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)


@dataclass
class EngineHeader:
    title: Optional[str] = None
    authors: List[EngineAuthor] = field(default_factory=list)
    abstract: Optional[str] = None
    keywords: List[str] = field(default_factory=list)


@dataclass
class EngineMarker:
    """An in-text reference marker as the engine reports it."""
    raw_text: str
    ref_type: str
    xml_id: Optional[str] = None
    target_xml_id: Optional[str] = None
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass
class EngineFigure:
    xml_id: Optional[str] = None
    label: Optional[str] = None
    caption: Optional[str] = None
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass
class EngineFormula:
    xml_id: Optional[str] = None
    label: Optional[str] = None
    text: Optional[str] = None
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass
class EnginePersonMention:
    name: str
    role: Optional[str] = None
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass
class EngineReference:
    """A bibliography entry as the engine reports it."""
    xml_id: Optional[str]
    raw_text: str
    authors: Optional[str] = None
    title: Optional[str] = None
    venue: Optional[str] = None
    year: Optional[int] = None
    doi: Optional[str] = None
    bboxes: List[BoundingBox] = field(default_factory=list)


@dataclass
class StructuredDocument:
    """Parsed structure-engine output for one PDF."""
    header: EngineHeader = field(default_factory=EngineHeader)
    markers: List[EngineMarker] = field(default_factory=list)
    references: List[EngineReference] = field(default_factory=list)
    figures: List[EngineFigure] = field(default_factory=list)
    formulas: List[EngineFormula] = field(default_factory=list)
    person_mentions: List[EnginePersonMention] = field(default_factory=list)
    page_heights: Dict[int, float] = field(default_factory=dict)
    raw_xml: str = ""

    def to_references(self, document_id: str) -> List[StructuredReference]:
        """Bibliography as persisted references, numbered in order."""
        references = []
        for number, ref in enumerate(self.references, 1):
            references.append(StructuredReference(
                id=new_id(),
                document_id=document_id,
                raw_text=normalize_reference_text(ref.raw_text),
                provenance=ReferenceProvenance.STRUCTURE_ENGINE,
                confidence=ENGINE_CONFIDENCE,
                number=number,
                external_ref_id=ref.xml_id,
                authors=ref.authors or None,
                title=ref.title,
                venue=ref.venue,
                year=ref.year,
                doi=ref.doi,
                page_num=ref.bboxes[0].page if ref.bboxes else None,
                bboxes=list(ref.bboxes),
            ))
        return references

    def to_citation_spans(self, document_id: str) -> List[EngineCitationSpan]:
        """Citation markers split per page; markers without coordinates are dropped."""
        spans = []
        for marker in self.markers:
            for page, boxes in sorted(group_by_page(marker.bboxes).items()):
                spans.append(EngineCitationSpan(
                    id=new_id(),
                    document_id=document_id,
                    page_num=page,
                    raw_text=marker.raw_text,
                    ref_type=marker.ref_type,
                    xml_id=marker.xml_id,
                    target_xml_id=marker.target_xml_id,
                    confidence=ENGINE_CONFIDENCE,
                    bboxes=boxes,
                ))
        return spans


@dataclass
class EngineInfo:
    version: str
    server_url: str
    initialized: bool


class StructureEngineClient(ABC):
    """Client of an external bibliographic structure engine."""

    @abstractmethod
    def process_fulltext(self, pdf_path: str) -> StructuredDocument:
        """Parse a whole PDF.

        Raises:
            StructureEngineFailure: If the engine is unreachable, times out or
                returns a malformed document
        """
        pass

    @abstractmethod
    def process_header(self, pdf_path: str) -> StructuredDocument:
        """Parse only the header metadata of a PDF."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def info(self) -> EngineInfo:
        pass


class DisabledStructureEngine(StructureEngineClient):
    """Engine used when structure extraction is turned off."""

    def process_fulltext(self, pdf_path: str) -> StructuredDocument:
        raise StructureEngineFailure("Structure engine is disabled")

    def process_header(self, pdf_path: str) -> StructuredDocument:
        raise StructureEngineFailure("Structure engine is disabled")

    def is_available(self) -> bool:
        return False

    def info(self) -> EngineInfo:
        return EngineInfo(version="N/A", server_url="N/A", initialized=False)
