"""Tesseract OCR engine (shells out to the ``tesseract`` binary)."""
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

from .base import OCREngine, render_page_png
from ...exceptions import OCRError

logger = logging.getLogger(__name__)

# Fully automatic page segmentation
PAGE_SEGMENTATION_MODE = 3


class TesseractOCR(OCREngine):
    """Render a page with PyMuPDF and OCR it with Tesseract.

    Requires the ``tesseract`` command and the language data for
    ``config.ocr_language`` (e.g. ``apt-get install tesseract-ocr-eng``).
    """

    def __init__(self, config, binary: str = "tesseract"):
        super().__init__(config)
        self.binary = binary
        self._available = None

    def is_available(self) -> bool:
        if self._available is None:
            self._available = self._probe()
        return self._available

    def _probe(self) -> bool:
        if shutil.which(self.binary) is None:
            logger.warning(f"Tesseract not available: '{self.binary}' not on PATH")
            return False
        try:
            result = subprocess.run(
                [self.binary, "--version"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Tesseract not available: {e}")
            return False

    def ocr_page(self, pdf_path: str, page_num: int) -> str:
        if not Path(pdf_path).exists():
            raise OCRError(f"PDF file not found: {pdf_path}")
        if not self.is_available():
            raise OCRError("Tesseract is not installed or not available in PATH")

        try:
            image = render_page_png(pdf_path, page_num, self.config.ocr_dpi)
        except Exception as e:
            raise OCRError(f"Failed to render page {page_num}: {e}") from e

        with tempfile.TemporaryDirectory(prefix="bibstruct-ocr-") as tmp:
            image_path = Path(tmp) / f"page-{page_num}.png"
            image_path.write_bytes(image)
            command = [
                self.binary,
                str(image_path),
                "stdout",
                "-l", self.config.ocr_language,
                "--oem", str(self.config.ocr_engine_mode),
                "--psm", str(PAGE_SEGMENTATION_MODE),
            ]
            logger.debug(f"Running: {' '.join(command)}")
            try:
                result = subprocess.run(command, capture_output=True, timeout=300)
            except (OSError, subprocess.SubprocessError) as e:
                raise OCRError(f"Tesseract failed on page {page_num}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise OCRError(
                f"Tesseract failed with exit code {result.returncode} on page {page_num}: {stderr}"
            )

        text = result.stdout.decode("utf-8", errors="replace")
        logger.info(f"✓ OCR page {page_num}: {len(text)} chars")
        return text
