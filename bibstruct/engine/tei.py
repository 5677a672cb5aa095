"""Parser for GROBID TEI XML.

GROBID reports element coordinates as ``page,x,y,width,height`` with the
origin at the top-left of the page; several boxes are separated by ``;``.
Page sizes come from ``<facsimile><surface>`` and are used to turn those
into PDF-coordinate ``BoundingBox`` values.
"""
import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from .base import (
    TEI_REF_TYPES,
    EngineAuthor,
    EngineFigure,
    EngineFormula,
    EngineHeader,
    EngineMarker,
    EnginePersonMention,
    EngineReference,
    StructuredDocument,
)
from ..core.geometry import from_xywh_top_left
from ..core.models import BoundingBox
from ..exceptions import StructureEngineFailure, ValidationError
from ..references.fields import validate_doi, validate_year

logger = logging.getLogger(__name__)


def _text(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def parse_page_heights(soup: BeautifulSoup) -> Dict[int, float]:
    """Page heights from ``<surface n=".." uly=".." lry="..">``."""
    heights = {}
    facsimile = soup.find("facsimile")
    if facsimile is None:
        return heights
    for index, surface in enumerate(facsimile.find_all("surface"), 1):
        try:
            page = int(surface.get("n", index))
            heights[page] = float(surface.get("lry", 0)) - float(surface.get("uly", 0))
        except (TypeError, ValueError):
            continue
    return heights


def parse_coords(coords: Optional[str], page_heights: Dict[int, float]) -> List[BoundingBox]:
    """Parse a ``coords`` attribute into PDF-coordinate boxes.

    Boxes on pages of unknown height, and malformed entries, are skipped.
    """
    if not coords:
        return []
    boxes = []
    for part in coords.split(";"):
        values = part.strip().split(",")
        if len(values) != 5:
            continue
        try:
            page = int(float(values[0]))
            x, y, width, height = (float(v) for v in values[1:])
        except ValueError:
            continue
        page_height = page_heights.get(page)
        if page_height is None:
            logger.debug(f"No page height for page {page}, skipping box")
            continue
        try:
            boxes.append(from_xywh_top_left(page, x, y, width, height, page_height))
        except ValidationError:
            continue
    return boxes


class TEIParser:
    """Converts GROBID TEI XML into a ``StructuredDocument``.

    Args:
        page_heights: Fallback page heights (1-indexed) for documents
            without a ``<facsimile>`` section
    """

    def __init__(self, page_heights: Optional[Dict[int, float]] = None):
        self.fallback_heights = dict(page_heights or {})

    def parse(self, tei_xml: str) -> StructuredDocument:
        """Parse TEI XML.

        Raises:
            StructureEngineFailure: If the XML is not a TEI document
        """
        if not tei_xml or not tei_xml.strip():
            raise StructureEngineFailure("Empty TEI document")
        soup = BeautifulSoup(tei_xml, "xml")
        if soup.find("TEI") is None:
            raise StructureEngineFailure("Response is not a TEI document")

        heights = dict(self.fallback_heights)
        heights.update(parse_page_heights(soup))
        self._heights = heights

        text = soup.find("text")
        body = text.find("body") if text is not None else None
        back = text.find("back") if text is not None else None

        document = StructuredDocument(
            header=self._parse_header(soup),
            markers=self._parse_markers(body),
            references=self._parse_references(back),
            figures=self._parse_figures(body),
            formulas=self._parse_formulas(body),
            person_mentions=self._parse_person_mentions(body),
            page_heights=heights,
            raw_xml=tei_xml,
        )
        logger.info(
            f"TEI parsed: {len(document.markers)} markers, "
            f"{len(document.references)} references, {len(document.figures)} figures"
        )
        return document

    def _coords(self, element: Tag) -> List[BoundingBox]:
        return parse_coords(element.get("coords"), self._heights)

    def _parse_header(self, soup: BeautifulSoup) -> EngineHeader:
        tei_header = soup.find("teiHeader")
        if tei_header is None:
            return EngineHeader()

        title_stmt = tei_header.find("titleStmt")
        title = _text(title_stmt.find("title")) if title_stmt is not None else None

        authors = []
        source_desc = tei_header.find("sourceDesc")
        analytic = source_desc.find("analytic") if source_desc is not None else None
        if analytic is not None:
            for author in analytic.find_all("author"):
                pers_name = author.find("persName")
                if pers_name is None:
                    continue
                authors.append(EngineAuthor(
                    first_name=_text(pers_name.find("forename", type="first")),
                    middle_name=_text(pers_name.find("forename", type="middle")),
                    last_name=_text(pers_name.find("surname")),
                    affiliation=_text(author.find("affiliation")),
                ))

        profile = tei_header.find("profileDesc")
        abstract = _text(profile.find("abstract")) if profile is not None else None
        keywords = []
        if profile is not None:
            keywords_el = profile.find("keywords")
            if keywords_el is not None:
                keywords = [t for t in (_text(term) for term in keywords_el.find_all("term")) if t]

        return EngineHeader(title=title, authors=authors, abstract=abstract, keywords=keywords)

    def _parse_markers(self, body: Optional[Tag]) -> List[EngineMarker]:
        if body is None:
            return []
        markers = []
        for ref in body.find_all("ref"):
            ref_type = TEI_REF_TYPES.get(ref.get("type"))
            if ref_type is None:
                continue
            markers.append(EngineMarker(
                raw_text=ref.get_text(strip=True),
                ref_type=ref_type,
                xml_id=ref.get("xml:id") or None,
                target_xml_id=ref.get("target") or None,
                bboxes=self._coords(ref),
            ))
        return markers

    def _parse_references(self, back: Optional[Tag]) -> List[EngineReference]:
        if back is None:
            return []
        references = []
        for list_bibl in back.find_all("listBibl"):
            for bibl in list_bibl.find_all("biblStruct", recursive=False):
                references.append(self._parse_reference(bibl))
        return references

    def _parse_reference(self, bibl: Tag) -> EngineReference:
        raw_note = bibl.find("note", type="raw_reference")
        raw_text = raw_note.get_text(" ", strip=True) if raw_note is not None else bibl.get_text(" ", strip=True)

        author_names = [_text(p) for p in bibl.find_all("persName") if p.find_parent("author") is not None]
        title = _text(bibl.find("title", level="a")) or _text(bibl.find("title"))
        venue = _text(bibl.find("title", level="j")) or _text(bibl.find("title", level="m"))
        date = bibl.find("date")
        year = validate_year(date.get("when")) if date is not None and date.get("when") else None

        return EngineReference(
            xml_id=bibl.get("xml:id") or None,
            raw_text=raw_text,
            authors=", ".join(n for n in author_names if n) or None,
            title=title,
            venue=venue,
            year=year,
            doi=validate_doi(_text(bibl.find("idno", type="DOI"))),
            bboxes=self._coords(bibl),
        )

    def _parse_figures(self, body: Optional[Tag]) -> List[EngineFigure]:
        if body is None:
            return []
        return [
            EngineFigure(
                xml_id=figure.get("xml:id") or None,
                label=_text(figure.find("head")),
                caption=_text(figure.find("figDesc")),
                bboxes=self._coords(figure),
            )
            for figure in body.find_all("figure")
        ]

    def _parse_formulas(self, body: Optional[Tag]) -> List[EngineFormula]:
        if body is None:
            return []
        return [
            EngineFormula(
                xml_id=formula.get("xml:id") or None,
                label=_text(formula.find("label")) or formula.get("n") or None,
                text=_text(formula),
                bboxes=self._coords(formula),
            )
            for formula in body.find_all("formula")
        ]

    def _parse_person_mentions(self, body: Optional[Tag]) -> List[EnginePersonMention]:
        if body is None:
            return []
        return [
            EnginePersonMention(
                name=_text(pers) or "",
                role=pers.get("role") or None,
                bboxes=self._coords(pers),
            )
            for pers in body.find_all("persName")
        ]


def parse_tei(tei_xml: str, page_heights: Optional[Dict[int, float]] = None) -> StructuredDocument:
    """Parse GROBID TEI XML into a ``StructuredDocument``."""
    return TEIParser(page_heights).parse(tei_xml)
