"""Tests for the structure engine: TEI parsing, GROBID client and server manager."""

import pytest
import requests

from bibstruct.core.models import BoundingBox, ReferenceProvenance
from bibstruct.engine.base import (
    ENGINE_CONFIDENCE,
    DisabledStructureEngine,
    normalize_reference_text,
)
from bibstruct.engine.grobid import GrobidClient
from bibstruct.engine.process_manager import GrobidProcessManager
from bibstruct.engine.tei import parse_coords, parse_tei
from bibstruct.exceptions import StructureEngineFailure

SAMPLE_TEI = """<?xml version="1.0" encoding="UTF-8"?>
<TEI xmlns="http://www.tei-c.org/ns/1.0" xmlns:xlink="http://www.w3.org/1999/xlink">
  <teiHeader>
    <fileDesc>
      <titleStmt><title level="a" type="main">Parsing Scholarly Documents</title></titleStmt>
      <sourceDesc>
        <biblStruct>
          <analytic>
            <author>
              <persName><forename type="first">Jane</forename><surname>Smith</surname></persName>
              <affiliation><orgName>University of Parsing</orgName></affiliation>
            </author>
          </analytic>
        </biblStruct>
      </sourceDesc>
    </fileDesc>
    <profileDesc>
      <abstract><p>We parse documents.</p></abstract>
      <textClass><keywords><term>citations</term><term>PDF</term></keywords></textClass>
    </profileDesc>
  </teiHeader>
  <facsimile>
    <surface n="1" ulx="0.0" uly="0.0" lrx="612.0" lry="792.0"/>
    <surface n="2" ulx="0.0" uly="0.0" lrx="612.0" lry="792.0"/>
  </facsimile>
  <text>
    <body>
      <div>
        <p>Prior work <ref type="bibr" target="#b0" coords="1,200.0,100.0,12.0,10.0">[1]</ref>
        and <ref type="bibr" target="#b1" coords="1,300.0,100.0,10.0,10.0;2,72.0,72.0,10.0,10.0">[2]</ref>,
        see <ref type="figure" target="#fig_0" coords="1,400.0,100.0,30.0,10.0">Fig. 1</ref>
        and <ref type="url" target="http://example.org">link</ref>.</p>
        <figure xml:id="fig_0" coords="1,72.0,300.0,400.0,200.0">
          <head>Figure 1</head><figDesc>Pipeline overview.</figDesc>
        </figure>
        <formula xml:id="formula_0" coords="1,72.0,600.0,200.0,20.0">E = mc^2<label>(1)</label></formula>
      </div>
    </body>
    <back>
      <div type="references">
        <listBibl>
          <biblStruct xml:id="b0" coords="2,72.0,100.0,400.0,20.0">
            <analytic>
              <title level="a" type="main">Citation parsing</title>
              <author><persName><forename type="first">A</forename><surname>Doe</surname></persName></author>
            </analytic>
            <monogr>
              <title level="j">Journal of Parsing</title>
              <imprint><date type="published" when="2019-05-01"/></imprint>
            </monogr>
            <idno type="DOI">10.1000/jp.2019.1</idno>
            <note type="raw_reference">A. Doe. Citation pars-
ing. Journal of Parsing, 2019. 2, 5</note>
          </biblStruct>
          <biblStruct xml:id="b1">
            <monogr>
              <title level="m">A Book</title>
              <imprint><date when="2020"/></imprint>
            </monogr>
            <note type="raw_reference">K. Lee. A Book, 2020.</note>
          </biblStruct>
        </listBibl>
      </div>
    </back>
  </text>
</TEI>
"""


class TestTEIParser:
    """Test conversion of GROBID TEI into the structured document."""

    def test_header(self):
        doc = parse_tei(SAMPLE_TEI)
        assert doc.header.title == "Parsing Scholarly Documents"
        assert doc.header.authors[0].full_name == "Jane Smith"
        assert doc.header.authors[0].affiliation == "University of Parsing"
        assert doc.header.abstract == "We parse documents."
        assert doc.header.keywords == ["citations", "PDF"]
        assert doc.page_heights == {1: 792.0, 2: 792.0}

    def test_markers_map_bibr_to_biblio(self):
        doc = parse_tei(SAMPLE_TEI)
        assert [(m.raw_text, m.ref_type) for m in doc.markers] == [
            ("[1]", "biblio"), ("[2]", "biblio"), ("Fig. 1", "figure"),
        ]
        assert doc.markers[0].target_xml_id == "#b0"

    def test_coordinates_are_converted(self):
        """Top-left ``x,y,w,h`` becomes a bottom-left box on the right page."""
        marker = parse_tei(SAMPLE_TEI).markers[0]
        assert marker.bboxes == [BoundingBox(page=1, x1=200.0, y1=682.0, x2=212.0, y2=692.0)]

    def test_references(self):
        doc = parse_tei(SAMPLE_TEI)
        first, second = doc.references
        assert first.xml_id == "b0"
        assert first.title == "Citation parsing"
        assert first.venue == "Journal of Parsing"
        assert first.year == 2019
        assert first.doi == "10.1000/jp.2019.1"
        assert first.authors == "A Doe"
        assert first.bboxes[0].page == 2
        assert second.venue == "A Book"
        assert second.year == 2020
        assert second.bboxes == []

    def test_figures_and_formulas(self):
        doc = parse_tei(SAMPLE_TEI)
        assert doc.figures[0].label == "Figure 1"
        assert doc.figures[0].caption == "Pipeline overview."
        assert doc.formulas[0].label == "(1)"

    def test_to_references(self):
        refs = parse_tei(SAMPLE_TEI).to_references("doc-1")
        assert [r.number for r in refs] == [1, 2]
        assert refs[0].external_ref_id == "b0"
        assert refs[0].raw_text == "A. Doe. Citation parsing. Journal of Parsing, 2019."
        assert refs[0].provenance == ReferenceProvenance.STRUCTURE_ENGINE
        assert refs[0].confidence == ENGINE_CONFIDENCE
        assert refs[0].page_num == 2
        assert refs[1].page_num is None

    def test_to_citation_spans_split_per_page(self):
        spans = parse_tei(SAMPLE_TEI).to_citation_spans("doc-1")
        assert [(s.raw_text, s.page_num) for s in spans] == [
            ("[1]", 1), ("[2]", 1), ("[2]", 2), ("Fig. 1", 1),
        ]
        assert all(len(s.bboxes) == 1 for s in spans)

    def test_fallback_page_heights(self):
        tei = SAMPLE_TEI.replace('<surface n="1" ulx="0.0" uly="0.0" lrx="612.0" lry="792.0"/>', "")
        doc = parse_tei(tei, page_heights={1: 800.0})
        assert doc.markers[0].bboxes[0].y2 == pytest.approx(700.0)

    def test_invalid_documents(self):
        with pytest.raises(StructureEngineFailure):
            parse_tei("")
        with pytest.raises(StructureEngineFailure):
            parse_tei("<html><body>Error 500</body></html>")

    def test_parse_coords(self):
        heights = {1: 792.0}
        assert parse_coords(None, heights) == []
        assert parse_coords("1,10,10,5", heights) == []
        assert parse_coords("3,10,10,5,5", heights) == []
        assert len(parse_coords("1,10,10,5,5;1,20,20,5,5", heights)) == 2

    def test_normalize_reference_text(self):
        assert normalize_reference_text("Deep learn-\ning. 2015. 2, 6, 7") == "Deep learning. 2015."
        assert normalize_reference_text("  A   B\n C ") == "A B C"


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """HTTP session recording calls; health checks answer ``alive``."""

    def __init__(self, alive=True, post_response=None, post_error=None):
        self.alive = alive
        self.post_response = post_response
        self.post_error = post_error
        self.posts = []

    def get(self, url, **kwargs):
        if not self.alive:
            raise requests.exceptions.ConnectionError("refused")
        return FakeResponse(200, "true")

    def post(self, url, files=None, data=None, timeout=None):
        self.posts.append((url, data))
        if self.post_error:
            raise self.post_error
        return self.post_response


class TestGrobidClient:
    """Test the REST client against a fake session."""

    def test_process_fulltext(self, config, paper_pdf):
        session = FakeSession(post_response=FakeResponse(200, SAMPLE_TEI))
        client = GrobidClient(config, session=session)
        doc = client.process_fulltext(paper_pdf)
        assert len(doc.references) == 2
        url, data = session.posts[0]
        assert url == "http://localhost:8070/api/processFulltextDocument"
        assert data["teiCoordinates"] == "persName,figure,ref,biblStruct,formula"
        assert data["includeRawCitations"] == "1"
        assert client.initialized
        assert client.info().initialized

    def test_unreachable_without_autostart(self, config, paper_pdf):
        client = GrobidClient(config, session=FakeSession(alive=False))
        assert not client.is_available()
        with pytest.raises(StructureEngineFailure):
            client.process_fulltext(paper_pdf)

    def test_http_error(self, config, paper_pdf):
        session = FakeSession(post_response=FakeResponse(503, "busy"))
        with pytest.raises(StructureEngineFailure):
            GrobidClient(config, session=session).process_fulltext(paper_pdf)

    def test_timeout(self, config, paper_pdf):
        session = FakeSession(post_error=requests.exceptions.ReadTimeout("slow"))
        with pytest.raises(StructureEngineFailure):
            GrobidClient(config, session=session).process_fulltext(paper_pdf)

    def test_missing_pdf(self, config, tmp_path):
        client = GrobidClient(config, session=FakeSession())
        with pytest.raises(StructureEngineFailure):
            client.process_fulltext(str(tmp_path / "missing.pdf"))

    def test_autostart_failure(self, config, paper_pdf):
        class FailingManager(GrobidProcessManager):
            def is_healthy(self):
                return False

            def start(self):
                return False

        config.grobid_autostart = True
        client = GrobidClient(config, process_manager=FailingManager(config), session=FakeSession(alive=False))
        with pytest.raises(StructureEngineFailure):
            client.process_fulltext(paper_pdf)

    def test_disabled_engine(self, paper_pdf):
        engine = DisabledStructureEngine()
        assert not engine.is_available()
        with pytest.raises(StructureEngineFailure):
            engine.process_fulltext(paper_pdf)


class TestGrobidProcessManager:
    """Test server lifecycle decisions without launching Java."""

    def test_already_running(self, config):
        manager = GrobidProcessManager(config, session=FakeSession(alive=True))
        assert manager.start()
        assert manager.is_running

    def test_launch_without_build_fails(self, config, monkeypatch):
        manager = GrobidProcessManager(config, session=FakeSession(alive=False), sleep=lambda s: None)
        monkeypatch.setattr(manager, "ensure_built", lambda: None)
        assert not manager.start()
        assert not manager.is_running

    def test_paths(self, config, tmp_path):
        manager = GrobidProcessManager(config)
        assert manager.source_dir == tmp_path / "grobid" / "grobid-0.8.2"
        assert manager.onejar.name == "grobid-service-0.8.2-onejar.jar"
