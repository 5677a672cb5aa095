"""Whole-document text extraction.

Runs ``PageExtractor`` over every page on a bounded thread pool and
aggregates method and quality. When a sample of pages is mostly garbled
and an alternate copy of the paper can be fetched (arXiv), extraction is
restarted against that copy.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

import fitz  # PyMuPDF

from .page_extractor import PageExtractor
from .quality import is_garbled
from ..core.models import DocumentText, ExtractionMethod, PageText, StepStatus
from ..exceptions import DownloadError, ExtractionFailure
from ..providers.download.arxiv import detect_arxiv_id
from ..providers.download.base import AlternateSourceDownloader

logger = logging.getLogger(__name__)

PAGE_MARKER = "<<<PAGE {page_num}>>>"

# Pages scanned for an arXiv stamp when no identifier is supplied
ID_DETECTION_PAGES = 2


def sample_pages(total_pages: int, sample_size: int) -> List[int]:
    """Evenly spread 1-indexed page numbers, at most ``sample_size`` of them."""
    if total_pages <= 0 or sample_size <= 0:
        return []
    if total_pages <= sample_size:
        return list(range(1, total_pages + 1))
    step = total_pages / sample_size
    return sorted({int(i * step) + 1 for i in range(sample_size)})


def overall_method(pages: List[PageText]) -> ExtractionMethod:
    """The single method all pages share, else HYBRID."""
    methods = {page.method for page in pages}
    if len(methods) == 1:
        return methods.pop()
    if not methods:
        return ExtractionMethod.NATIVE
    return ExtractionMethod.HYBRID


def last_pages_text(pages: List[PageText], count: int) -> str:
    """Text of the last ``count`` pages with ``<<<PAGE n>>>`` markers."""
    selected = sorted(pages, key=lambda p: p.page_num)[-count:] if count > 0 else []
    return "\n\n".join(
        f"{PAGE_MARKER.format(page_num=page.page_num)}\n{page.text}" for page in selected
    )


class DocumentExtractor:
    """Drives ``PageExtractor`` across all pages of a document.

    Args:
        config: Configuration
        page_extractor: Per-page extractor
        downloader: Alternate-source downloader, or None to never re-download
    """

    def __init__(
        self,
        config,
        page_extractor: PageExtractor,
        downloader: Optional[AlternateSourceDownloader] = None,
    ):
        self.config = config
        self.page_extractor = page_extractor
        self.downloader = downloader

    @property
    def alternate_source_usable(self) -> bool:
        return bool(self.config.alternate_source_enabled and self.downloader is not None)

    def page_count(self, pdf_path: str) -> int:
        try:
            with fitz.open(pdf_path) as doc:
                return doc.page_count
        except (RuntimeError, ValueError, OSError) as e:
            raise ExtractionFailure(f"Cannot open PDF {pdf_path}: {e}") from e

    def garbled_sample_ratio(self, pdf_path: str, total_pages: int) -> float:
        """Fraction of sampled pages whose native text is garbled."""
        sample = sample_pages(total_pages, self.config.garbled_sample_size)
        if not sample:
            return 0.0
        garbled = 0
        with fitz.open(pdf_path) as doc:
            for page_num in sample:
                if is_garbled(self.page_extractor.extract_native(pdf_path, page_num, doc)):
                    garbled += 1
        return garbled / len(sample)

    def find_known_id(self, pdf_path: str) -> Optional[str]:
        """Detect an arXiv identifier on the first pages."""
        try:
            with fitz.open(pdf_path) as doc:
                for index in range(min(ID_DETECTION_PAGES, doc.page_count)):
                    arxiv_id = detect_arxiv_id(doc[index].get_text())
                    if arxiv_id:
                        return arxiv_id
        except (RuntimeError, ValueError, OSError) as e:
            logger.warning(f"Could not scan {pdf_path} for an arXiv id: {e}")
        return None

    def fetch_alternate(self, pdf_path: str, known_id: Optional[str] = None) -> Optional[str]:
        """Download an alternate copy of the paper.

        Returns:
            Path of the new copy, or None when disabled, no identifier is
            known, or the download failed
        """
        if not self.alternate_source_usable:
            return None
        known_id = known_id or self.find_known_id(pdf_path)
        if not known_id:
            logger.info("No public identifier known, skipping alternate-source download")
            return None
        try:
            return self.downloader.download_from_known_id(known_id)
        except DownloadError as e:
            logger.warning(f"Alternate-source download failed for {known_id}: {e}")
            return None

    def extract_all(self, pdf_path: str, known_id: Optional[str] = None) -> DocumentText:
        """Extract every page of a PDF.

        Args:
            pdf_path: Path to PDF file
            known_id: Public identifier (arXiv id) for alternate-source download

        Returns:
            DocumentText with pages ordered by page number

        Raises:
            ExtractionFailure: If the PDF cannot be opened
        """
        start = time.time()
        total_pages = self.page_count(pdf_path)

        if self.alternate_source_usable and total_pages:
            ratio = self.garbled_sample_ratio(pdf_path, total_pages)
            if ratio > self.config.garbled_page_ratio:
                logger.info(f"{ratio:.0%} of sampled pages garbled, trying alternate source")
                alternate = self.fetch_alternate(pdf_path, known_id)
                if alternate:
                    logger.info(f"✓ Restarting extraction on alternate copy: {alternate}")
                    pdf_path = alternate
                    total_pages = self.page_count(pdf_path)

        pages = self._extract_pages(pdf_path, total_pages)
        method = overall_method(pages)
        average = sum(p.quality_score for p in pages) / len(pages) if pages else 0.0

        if any(p.method == ExtractionMethod.OCR for p in pages):
            ocr_status = StepStatus.SUCCESS
        elif self.page_extractor.ocr_usable and any(p.is_garbled for p in pages):
            ocr_status = StepStatus.FAILED
        else:
            ocr_status = StepStatus.SKIPPED

        elapsed = (time.time() - start) * 1000
        logger.info(
            f"Extracted {total_pages} pages, method={method.value}, "
            f"avgQuality={average:.2f} in {elapsed:.0f}ms"
        )

        return DocumentText(
            pages=pages,
            total_pages=total_pages,
            overall_method=method,
            average_quality=average,
            pdf_path=pdf_path,
            ocr_status=ocr_status,
        )

    def _extract_pages(self, pdf_path: str, total_pages: int) -> List[PageText]:
        results: Dict[int, PageText] = {}
        workers = max(1, min(self.config.page_workers, total_pages or 1))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_page = {
                executor.submit(self.page_extractor.extract_page, pdf_path, page_num): page_num
                for page_num in range(1, total_pages + 1)
            }
            for future in as_completed(future_to_page):
                page_num = future_to_page[future]
                try:
                    results[page_num] = future.result()
                except ExtractionFailure as e:
                    logger.warning(f"Extraction failed for page {page_num}: {e}")
                    results[page_num] = PageText(
                        page_num=page_num,
                        text="",
                        method=ExtractionMethod.NATIVE,
                        is_garbled=True,
                        quality_score=0.0,
                    )

        return [results[page_num] for page_num in sorted(results)]
