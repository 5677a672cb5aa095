"""Base OCR engine interface."""
from abc import abstractmethod

import fitz  # PyMuPDF

from ..base import BaseProvider


class OCREngine(BaseProvider):
    """Abstract base class for OCR engines."""

    #: Confidence reported for OCR text (engines give no calibrated score)
    estimated_confidence: float = 0.8

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the engine can run in this environment."""
        pass

    @abstractmethod
    def ocr_page(self, pdf_path: str, page_num: int) -> str:
        """OCR one page.

        Args:
            pdf_path: Path to PDF file
            page_num: Page number (1-indexed)

        Returns:
            Recognised text

        Raises:
            OCRError: If OCR fails
        """
        pass


def render_page_png(pdf_path: str, page_num: int, dpi: int) -> bytes:
    """Render one PDF page to PNG bytes at the given DPI."""
    doc = fitz.open(pdf_path)
    try:
        page = doc[page_num - 1]
        mat = fitz.Matrix(dpi / 72, dpi / 72)
        pix = page.get_pixmap(matrix=mat)
        return pix.tobytes("png")
    finally:
        doc.close()
