"""Single-page text extraction with escalation.

Layers, stopping at the first clean result:

1. PyMuPDF layout extraction (position sorted, for multi-column pages)
2. poppler ``pdftotext`` for that page only, UTF-8, layout preserved
3. OCR of the rendered page, when enabled and available
4. The garbled native text, so a single bad page never blocks a document
"""
import logging
import shutil
import subprocess
from typing import Optional

import fitz  # PyMuPDF

from .quality import is_garbled, quality_score
from ..core.models import ExtractionMethod, PageText
from ..exceptions import ExtractionFailure, OCRError
from ..providers.ocr.base import OCREngine

logger = logging.getLogger(__name__)


class PdftotextTool:
    """Thin wrapper around poppler's ``pdftotext`` command."""

    def __init__(self, binary: str = "pdftotext", timeout: float = 60):
        self.binary = binary
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def extract(self, pdf_path: str, first_page: int, last_page: int) -> Optional[str]:
        """Extract a page range; None when the tool fails or prints nothing."""
        cmd = [
            self.binary,
            "-f", str(first_page),
            "-l", str(last_page),
            "-layout",
            "-enc", "UTF-8",
            pdf_path,
            "-",
        ]
        try:
            process = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except FileNotFoundError:
            logger.debug(f"{self.binary} not found")
            return None
        except subprocess.TimeoutExpired:
            logger.warning(f"{self.binary} timed out on pages {first_page}-{last_page}")
            return None

        output = process.stdout.decode("utf-8", errors="replace")
        if process.returncode != 0 or not output.strip():
            return None
        return output


class PageExtractor:
    """Extracts the text of one page, escalating through extraction layers.

    Args:
        config: Configuration (``pdftotext_enabled`` and ``ocr_enabled`` are read)
        ocr_engine: OCR engine, or None to never OCR
        text_tool: External text tool, defaults to ``PdftotextTool``
    """

    def __init__(
        self,
        config,
        ocr_engine: Optional[OCREngine] = None,
        text_tool: Optional[PdftotextTool] = None,
    ):
        self.config = config
        self.ocr_engine = ocr_engine
        self.text_tool = text_tool or PdftotextTool()

    @property
    def ocr_usable(self) -> bool:
        return bool(
            self.config.ocr_enabled
            and self.ocr_engine is not None
            and self.ocr_engine.is_available()
        )

    def extract_native(self, pdf_path: str, page_num: int, doc: Optional[fitz.Document] = None) -> str:
        """Layout-aware PyMuPDF text for one page (1-indexed).

        Raises:
            ExtractionFailure: If the PDF or page cannot be read
        """
        owns_doc = doc is None
        try:
            if owns_doc:
                doc = fitz.open(pdf_path)
            return doc[page_num - 1].get_text("text", sort=True)
        except (RuntimeError, ValueError, IndexError, OSError) as e:
            raise ExtractionFailure(f"Cannot read page {page_num} of {pdf_path}: {e}") from e
        finally:
            if owns_doc and doc is not None:
                doc.close()

    def extract_external(self, pdf_path: str, page_num: int) -> Optional[str]:
        if not self.config.pdftotext_enabled:
            return None
        return self.text_tool.extract(pdf_path, page_num, page_num)

    def extract_ocr(self, pdf_path: str, page_num: int) -> Optional[str]:
        if not self.ocr_usable:
            return None
        try:
            return self.ocr_engine.ocr_page(pdf_path, page_num)
        except OCRError as e:
            logger.warning(f"OCR failed for page {page_num}: {e}")
            return None

    def extract_page(self, pdf_path: str, page_num: int, doc: Optional[fitz.Document] = None) -> PageText:
        """Extract one page, escalating until the text is not garbled.

        Args:
            pdf_path: Path to PDF file
            page_num: Page number (1-indexed)
            doc: Already opened document to reuse (must not be shared across threads)

        Returns:
            PageText with method, garbled flag and quality score
        """
        native_text = self.extract_native(pdf_path, page_num, doc)
        if not is_garbled(native_text):
            return _page(page_num, native_text, ExtractionMethod.NATIVE)

        logger.info(f"Page {page_num} is garbled, trying pdftotext")
        external_text = self.extract_external(pdf_path, page_num)
        if external_text is not None and not is_garbled(external_text):
            return _page(page_num, external_text, ExtractionMethod.EXTERNAL_TOOL)

        if self.ocr_usable:
            logger.info(f"Page {page_num} still garbled, trying OCR")
            ocr_text = self.extract_ocr(pdf_path, page_num)
            if ocr_text and ocr_text.strip():
                return _page(
                    page_num,
                    ocr_text,
                    ExtractionMethod.OCR,
                    ocr_confidence=self.ocr_engine.estimated_confidence,
                )

        logger.warning(f"All methods failed for page {page_num}, using garbled native text")
        return _page(page_num, native_text, ExtractionMethod.NATIVE, garbled=True)


def _page(
    page_num: int,
    text: str,
    method: ExtractionMethod,
    garbled: bool = False,
    ocr_confidence: Optional[float] = None,
) -> PageText:
    return PageText(
        page_num=page_num,
        text=text,
        method=method,
        is_garbled=garbled,
        quality_score=quality_score(text),
        ocr_confidence=ocr_confidence,
    )
