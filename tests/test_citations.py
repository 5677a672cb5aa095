"""Tests for citation span detection and citation linking."""

import fitz  # PyMuPDF
import pytest

from bibstruct.citations.linker import (
    AUTHOR_YEAR_MAX,
    CitationLinker,
    author_year_confidence,
    parse_author_year,
    parse_numeric,
)
from bibstruct.citations.span_extractor import CitationSpanExtractor, detect_style, looks_like_citation
from bibstruct.core.models import (
    BoundingBox,
    CitationSpan,
    CitationStyle,
    EngineCitationSpan,
    LinkMethod,
    ReferenceProvenance,
    SpanProvenance,
    StructuredReference,
)

from conftest import BODY_PAGE, REFERENCES_PAGE, write_pdf


def ref(number, page_num=None, authors=None, year=None, title=None, external_ref_id=None,
        provenance=ReferenceProvenance.LLM_FALLBACK):
    return StructuredReference(
        id=f"ref-{number}",
        document_id="doc",
        raw_text=f"reference {number}",
        provenance=provenance,
        confidence=0.9,
        number=number,
        external_ref_id=external_ref_id,
        authors=authors,
        title=title,
        year=year,
        page_num=page_num,
    )


def span(raw_text, style=CitationStyle.NUMERIC, provenance=SpanProvenance.PATTERN, page_num=1,
         dest_page=None, span_id="span-1"):
    return CitationSpan(
        id=span_id,
        document_id="doc",
        page_num=page_num,
        bbox=BoundingBox(page=page_num, x1=10, y1=10, x2=30, y2=20),
        raw_text=raw_text,
        style=style,
        provenance=provenance,
        confidence=0.9,
        dest_page=dest_page,
    )


class TestParsing:
    """Test marker parsing helpers."""

    def test_parse_numeric(self):
        assert parse_numeric("[1,3-5,8]") == [1, 3, 4, 5, 8]
        assert parse_numeric("[2, 3]") == [2, 3]
        assert parse_numeric("[7–9]") == [7, 8, 9]
        assert parse_numeric("[1, 1, 2]") == [1, 2]

    def test_parse_numeric_rejects_bad_ranges(self):
        assert parse_numeric("[5-3]") == []
        assert parse_numeric("[1-100]") == []
        assert parse_numeric("[1-100]", max_range_span=200) == list(range(1, 101))
        assert parse_numeric("[0, 10000]") == []

    def test_parse_author_year(self):
        assert parse_author_year("(Smith et al., 2020)") == ("Smith", 2020)
        assert parse_author_year("(Doe and Roe, 2019a)") == ("Doe", 2019)
        assert parse_author_year("[12]") is None

    def test_looks_like_citation(self):
        assert looks_like_citation("[1]")
        assert looks_like_citation("[2, 3]")
        assert looks_like_citation("12")
        assert looks_like_citation("Smith et al. 2020")
        assert not looks_like_citation("Section 3")
        assert not looks_like_citation("")
        assert not looks_like_citation("[1] " + "x" * 60)

    def test_detect_style(self):
        assert detect_style("[1-3]") == CitationStyle.NUMERIC
        assert detect_style("4") == CitationStyle.NUMERIC
        assert detect_style("(Smith, 2020)") == CitationStyle.AUTHOR_YEAR
        assert detect_style("see above") == CitationStyle.UNKNOWN


class TestSpanExtractor:
    """Test marker detection on generated PDFs."""

    def test_pattern_pass(self, paper_pdf):
        """Without link annotations, numeric markers come from text patterns."""
        result = CitationSpanExtractor().extract(paper_pdf, "doc")
        assert result.error is None
        assert result.references_start_page == 2
        assert not result.has_annotations
        assert [s.raw_text for s in result.spans] == ["[1]", "[2, 3]", "[1-3]"]
        for s in result.spans:
            assert s.page_num == 1
            assert s.provenance == SpanProvenance.PATTERN
            assert s.style == CitationStyle.NUMERIC
            assert s.confidence == 0.85
            assert 0 < s.bbox.y1 < s.bbox.y2 < 792

    def test_pattern_bbox_matches_text_position(self, paper_pdf):
        result = CitationSpanExtractor().extract(paper_pdf, "doc")
        with fitz.open(paper_pdf) as doc:
            rect = doc[0].search_for("[1]")[0]
        bbox = result.spans[0].bbox.to_viewport(792)
        assert bbox.x1 == pytest.approx(rect.x0, abs=1.5)
        assert bbox.x2 == pytest.approx(rect.x1, abs=1.5)

    def test_author_year_pattern(self, tmp_path):
        pdf = write_pdf(tmp_path / "ay.pdf", [
            "As shown (Smith et al., 2020) and (Doe and Roe, 2019) before.",
            REFERENCES_PAGE,
        ])
        result = CitationSpanExtractor().extract(pdf, "doc")
        assert [s.raw_text for s in result.spans] == ["(Smith et al., 2020)", "(Doe and Roe, 2019)"]
        assert all(s.style == CitationStyle.AUTHOR_YEAR for s in result.spans)
        assert all(s.confidence == 0.75 for s in result.spans)

    def test_annotation_pass(self, tmp_path):
        """A goto link over a marker wins over patterns on that page."""
        pdf = write_pdf(
            tmp_path / "linked.pdf",
            [BODY_PAGE, REFERENCES_PAGE],
            links=[{"page": 1, "text": "[1]", "dest_page": 2}],
        )
        result = CitationSpanExtractor().extract(pdf, "doc")
        assert result.has_annotations
        assert len(result.spans) == 1
        marker = result.spans[0]
        assert marker.raw_text == "[1]"
        assert marker.provenance == SpanProvenance.ANNOTATION
        assert marker.confidence == 0.95
        assert marker.dest_page == 2
        assert marker.dest_y is not None

    def test_non_citation_links_fall_back_to_patterns(self, tmp_path):
        pdf = write_pdf(
            tmp_path / "toc.pdf",
            [BODY_PAGE, REFERENCES_PAGE],
            links=[{"page": 1, "text": "Introduction", "dest_page": 2}],
        )
        result = CitationSpanExtractor().extract(pdf, "doc")
        assert not result.has_annotations
        assert result.pattern_count == 3

    def test_uri_links_ignored(self, tmp_path):
        pdf = write_pdf(tmp_path / "uri.pdf", [BODY_PAGE, REFERENCES_PAGE])
        doc = fitz.open(pdf)
        page = doc[0]
        page.insert_link({"kind": fitz.LINK_URI, "from": page.search_for("[1]")[0], "uri": "https://example.org"})
        uri_pdf = str(tmp_path / "uri-linked.pdf")
        doc.save(uri_pdf)
        doc.close()
        result = CitationSpanExtractor().extract(uri_pdf, "doc")
        assert result.annotation_count == 0
        assert result.pattern_count == 3

    def test_missing_pdf_reports_error(self, tmp_path):
        result = CitationSpanExtractor().extract(str(tmp_path / "missing.pdf"), "doc")
        assert result.spans == []
        assert "not found" in result.error

    def test_corrupt_pdf_reports_error(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        result = CitationSpanExtractor().extract(str(path), "doc")
        assert result.spans == []
        assert result.error


class TestNumericLinking:
    """Test numeric and author-year strategies."""

    def test_numeric(self):
        refs = [ref(n) for n in range(1, 9)]
        links = CitationLinker().link([span("[1,3-5,8]")], refs)
        assert [l.reference_id for l in links] == ["ref-1", "ref-3", "ref-4", "ref-5", "ref-8"]
        assert all(l.method == LinkMethod.NUMERIC and l.confidence == 0.95 for l in links)

    def test_unknown_numbers_are_dropped(self):
        links = CitationLinker().link([span("[2, 40]")], [ref(1), ref(2)])
        assert [l.reference_id for l in links] == ["ref-2"]

    def test_reversed_range_links_nothing(self):
        assert CitationLinker().link([span("[5-3]")], [ref(n) for n in range(1, 6)]) == []

    def test_no_references(self):
        assert CitationLinker().link([span("[1]")], []) == []

    def test_author_year_best_candidate(self):
        refs = [
            ref(1, authors="Jones, Smith", year=2020),
            ref(2, authors="Smith, Lee", year=2020),
            ref(3, authors="Smith", year=2018),
        ]
        links = CitationLinker().link([span("(Smith et al., 2020)", style=CitationStyle.AUTHOR_YEAR)], refs)
        assert len(links) == 1
        assert links[0].method == LinkMethod.AUTHOR_YEAR_FUZZY
        assert links[0].confidence <= AUTHOR_YEAR_MAX
        assert links[0].reference_id in ("ref-1", "ref-2")

    def test_author_year_no_match(self):
        links = CitationLinker().link(
            [span("(Brown, 2001)", style=CitationStyle.AUTHOR_YEAR)],
            [ref(1, authors="Smith", year=2001)],
        )
        assert links == []

    def test_author_year_confidence_monotonic(self):
        """More evidence never lowers confidence, and it is capped."""
        first = ref(1, authors="Smith, Lee", year=2020)
        other = ref(2, authors="Lee, Smith", year=2020)
        absent = ref(3, authors="Lee", year=2020)
        assert author_year_confidence("Smith", 2019, first) == pytest.approx(0.75)
        assert author_year_confidence("Smith", 2019, other) == pytest.approx(0.65)
        assert author_year_confidence("Smith", 2019, absent) == pytest.approx(0.5)
        assert author_year_confidence("Smith", 2020, absent) == pytest.approx(0.7)
        assert author_year_confidence("Smith", 2020, other) == pytest.approx(0.85)
        assert author_year_confidence("Smith", 2020, first) == AUTHOR_YEAR_MAX


class TestAnnotationLinking:
    """Test linking through annotation destinations."""

    def annotated(self, raw_text="[2]", dest_page=5):
        return span(raw_text, provenance=SpanProvenance.ANNOTATION, dest_page=dest_page)

    def test_single_reference_on_page(self):
        refs = [ref(1, page_num=4), ref(2, page_num=5)]
        links = CitationLinker().link([self.annotated("[9]")], refs)
        assert [(l.reference_id, l.method, l.confidence) for l in links] == [
            ("ref-2", LinkMethod.ANNOTATION_GOTO, 0.95),
        ]

    def test_numeric_inside_destination_page(self):
        refs = [ref(1, page_num=5), ref(2, page_num=5), ref(3, page_num=6)]
        links = CitationLinker().link([self.annotated("[2]")], refs)
        assert [(l.reference_id, l.method, l.confidence) for l in links] == [
            ("ref-2", LinkMethod.ANNOTATION_NUMERIC, 0.92),
        ]

    def test_numeric_outside_destination_page(self):
        refs = [ref(1, page_num=5), ref(2, page_num=5), ref(3, page_num=6)]
        links = CitationLinker().link([self.annotated("[3]")], refs)
        assert [(l.reference_id, l.confidence) for l in links] == [("ref-3", 0.75)]

    def test_page_only(self):
        refs = [ref(1, page_num=5), ref(2, page_num=5)]
        links = CitationLinker().link([self.annotated("Smith 2020")], refs)
        assert {l.reference_id for l in links} == {"ref-1", "ref-2"}
        assert all(l.method == LinkMethod.ANNOTATION_PAGE_ONLY and l.confidence == 0.6 for l in links)

    def test_adjacent_page(self):
        refs = [ref(1, page_num=4), ref(2, page_num=6), ref(3, page_num=9)]
        numeric = CitationLinker().link([self.annotated("[2]")], refs)
        assert [(l.reference_id, l.method, l.confidence) for l in numeric] == [
            ("ref-2", LinkMethod.ANNOTATION_NUMERIC, 0.75),
        ]
        page_only = CitationLinker().link([self.annotated("Smith 2020")], refs)
        assert {l.reference_id for l in page_only} == {"ref-1", "ref-2"}
        assert all(l.confidence == 0.5 for l in page_only)

    def test_destination_before_bibliography(self):
        """Links into the body fall through to the numeric strategy."""
        refs = [ref(1, page_num=5), ref(2, page_num=5)]
        links = CitationLinker().link([self.annotated("[2]", dest_page=3)], refs, references_start_page=5)
        assert [(l.reference_id, l.method) for l in links] == [("ref-2", LinkMethod.NUMERIC)]

    def test_no_candidates_numeric_fallback(self):
        """No reference near the destination: the number still resolves, at offset confidence."""
        refs = [ref(1, page_num=9), ref(2, page_num=9)]
        links = CitationLinker().link([self.annotated("[2]")], refs)
        assert [(l.reference_id, l.method, l.confidence) for l in links] == [
            ("ref-2", LinkMethod.ANNOTATION_NUMERIC, 0.75),
        ]

    def test_no_page_numbers_numeric_fallback(self):
        refs = [ref(1), ref(2)]
        links = CitationLinker().link([self.annotated("[1]")], refs)
        assert [(l.reference_id, l.method, l.confidence) for l in links] == [
            ("ref-1", LinkMethod.ANNOTATION_NUMERIC, 0.75),
        ]

    def test_no_candidates_and_no_number(self):
        refs = [ref(1, page_num=9, authors="J Smith", year=2020)]
        cited = span("(Smith 2020)", style=CitationStyle.AUTHOR_YEAR,
                     provenance=SpanProvenance.ANNOTATION, dest_page=5)
        links = CitationLinker().link([cited], refs)
        assert [(l.method, l.confidence) for l in links] == [(LinkMethod.AUTHOR_YEAR_FUZZY, 0.85)]


class TestEngineTargetLinking:
    """Test linking through structure-engine marker targets."""

    def engine_span(self, raw_text="[1]", target="#b0", ref_type="biblio", page_num=1):
        return EngineCitationSpan(
            id="es-1", document_id="doc", page_num=page_num, raw_text=raw_text,
            ref_type=ref_type, target_xml_id=target,
        )

    def engine_refs(self):
        return [
            ref(1, external_ref_id="b0", provenance=ReferenceProvenance.STRUCTURE_ENGINE),
            ref(2, external_ref_id="b1", provenance=ReferenceProvenance.STRUCTURE_ENGINE),
        ]

    def test_engine_target(self):
        refs = self.engine_refs()
        links = CitationLinker().link(
            [span("[2]")], refs, engine_spans=[self.engine_span("[2]", "#b1")], engine_references=refs
        )
        assert [(l.reference_id, l.method, l.confidence) for l in links] == [
            ("ref-2", LinkMethod.STRUCTURE_TARGET, 0.98),
        ]

    def test_engine_target_resolves_by_number(self):
        """An engine id maps to a differently sourced reference by position."""
        engine_refs = [StructuredReference(
            id="engine-b1", document_id="doc", raw_text="x",
            provenance=ReferenceProvenance.STRUCTURE_ENGINE, confidence=0.95,
            external_ref_id="b1",
        )]
        refs = [ref(1), ref(2)]
        links = CitationLinker().link(
            [span("[2]")], refs, engine_spans=[self.engine_span("[2]", "#b1")], engine_references=engine_refs
        )
        assert [(l.reference_id, l.method) for l in links] == [("ref-2", LinkMethod.STRUCTURE_TARGET)]

    def test_non_biblio_marker_ignored(self):
        refs = self.engine_refs()
        links = CitationLinker().link(
            [span("[1]")], refs,
            engine_spans=[self.engine_span("[1]", "#fig_0", ref_type="figure")],
            engine_references=refs,
        )
        assert [l.method for l in links] == [LinkMethod.NUMERIC]

    def test_engine_span_on_other_page_ignored(self):
        refs = self.engine_refs()
        links = CitationLinker().link(
            [span("[1]")], refs,
            engine_spans=[self.engine_span("[1]", "#b1", page_num=2)],
            engine_references=refs,
        )
        assert [(l.reference_id, l.method) for l in links] == [("ref-1", LinkMethod.NUMERIC)]
