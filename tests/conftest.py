"""Shared fixtures: PDFs generated with PyMuPDF and fake collaborators."""
import json
import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import fitz  # PyMuPDF
import pytest

from bibstruct.config import Config
from bibstruct.engine.base import EngineInfo, StructureEngineClient, StructuredDocument
from bibstruct.exceptions import DownloadError, OCRError, StructureEngineFailure
from bibstruct.providers.download.base import AlternateSourceDownloader
from bibstruct.providers.llm.base import BaseLLMProvider
from bibstruct.providers.ocr.base import OCREngine


def write_pdf(path: Path, pages: Sequence[str], links: Optional[List[Dict]] = None) -> str:
    """Write a PDF with one text block per page.

    Args:
        path: Output path
        pages: Page texts (newlines start new lines)
        links: ``{"page": 1, "text": "[1]", "dest_page": 2}`` entries; a goto
            link is placed over the first occurrence of ``text``
    """
    doc = fitz.open()
    for text in pages:
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 72), text, fontsize=11, fontname="helv")
    for link in links or []:
        page = doc[link["page"] - 1]
        rect = page.search_for(link["text"])[0]
        page.insert_link({
            "kind": fitz.LINK_GOTO,
            "from": rect,
            "page": link["dest_page"] - 1,
            "to": fitz.Point(72, 100),
        })
    doc.save(str(path))
    doc.close()
    return str(path)


BODY_PAGE = (
    "Introduction\n"
    "Prior work on parsing [1] showed strong results.\n"
    "Later studies [2, 3] extended this to scanned papers.\n"
    "A survey covers the field [1-3]."
)

REFERENCES_PAGE = (
    "References\n"
    "[1] Smith, J. Parsing scholarly documents. Journal of Parsing, 2019.\n"
    "[2] Doe, A. and Roe, B. Scanned paper analysis. In Proc. ICDAR, 2020.\n"
    "[3] Lee, K. Citation graphs at scale. Data Journal, 2021. doi:10.1000/dj.2021.7"
)


@pytest.fixture
def config(tmp_path):
    return Config(
        structure_engine_enabled=True,
        pdftotext_enabled=False,
        ocr_enabled=False,
        alternate_source_enabled=False,
        page_workers=2,
        enable_rate_limiting=False,
        download_dir=str(tmp_path / "downloads"),
        grobid_install_dir=str(tmp_path / "grobid"),
    )


@pytest.fixture
def paper_pdf(tmp_path):
    """Two pages: numeric citations, then a numbered bibliography."""
    return write_pdf(tmp_path / "paper.pdf", [BODY_PAGE, REFERENCES_PAGE])


@pytest.fixture
def restore_root_logger():
    """Undo ``setup_logging`` changes to the root logger."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class FakeLLM(BaseLLMProvider):
    """Language model that answers with ``respond(prompt)``."""

    def __init__(self, respond: Callable[[str], str]):
        super().__init__(None)
        self.respond = respond
        self.prompts: List[str] = []

    def chat(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.respond(prompt)


def echo_references(prompt: str) -> str:
    """Reply with one reference per ``[n]`` entry found in the prompt text."""
    text = prompt.split("**Text:**", 1)[1].split("**Remember:**", 1)[0]
    items = []
    for match in re.finditer(r"^\[(\d+)\]\s*(.+)$", text, re.MULTILINE):
        number, raw = int(match.group(1)), match.group(2).strip()
        year = re.findall(r"(?:19|20)\d{2}", raw)
        items.append({
            "refIndex": number,
            "refLabel": f"[{number}]",
            "raw": raw,
            "authors": [{"family": raw.split(",")[0], "given": None, "raw": raw.split(",")[0]}],
            "title": None,
            "year": int(year[-1]) if year else None,
            "venue": None,
            "doi": None,
            "confidence": 0.9,
        })
    return json.dumps(items)


class FakeEngine(StructureEngineClient):
    """Structure engine returning a fixed document, or failing."""

    def __init__(self, document: Optional[StructuredDocument] = None, fail: bool = False):
        self.document = document
        self.fail = fail
        self.calls: List[str] = []

    def process_fulltext(self, pdf_path: str) -> StructuredDocument:
        self.calls.append(pdf_path)
        if self.fail:
            raise StructureEngineFailure("GROBID server not reachable")
        return self.document

    def process_header(self, pdf_path: str) -> StructuredDocument:
        return self.process_fulltext(pdf_path)

    def is_available(self) -> bool:
        return not self.fail

    def info(self) -> EngineInfo:
        return EngineInfo(version="fake", server_url="", initialized=True)


class FakeOCR(OCREngine):
    """OCR engine returning fixed text, or failing."""

    def __init__(self, text: str = "", fail: bool = False, available: bool = True):
        super().__init__(None)
        self.text = text
        self.fail = fail
        self.available = available
        self.calls: List[int] = []

    def is_available(self) -> bool:
        return self.available

    def ocr_page(self, pdf_path: str, page_num: int) -> str:
        self.calls.append(page_num)
        if self.fail:
            raise OCRError("OCR failed")
        return self.text


class FakeTextTool:
    """Stand-in for ``PdftotextTool``."""

    def __init__(self, text: Optional[str]):
        self.text = text
        self.calls: List[int] = []

    def is_available(self) -> bool:
        return True

    def extract(self, pdf_path: str, first_page: int, last_page: int) -> Optional[str]:
        self.calls.append(first_page)
        return self.text


class FakeDownloader(AlternateSourceDownloader):
    """Alternate-source downloader returning a fixed path, or failing."""

    def __init__(self, path: Optional[str] = None, fail: bool = False):
        super().__init__(None)
        self.path = path
        self.fail = fail
        self.calls: List[str] = []

    def download_from_known_id(self, known_id: str) -> str:
        self.calls.append(known_id)
        if self.fail:
            raise DownloadError("mirror down")
        return self.path
