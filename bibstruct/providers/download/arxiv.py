"""arXiv downloader.

Publisher PDFs often embed fonts without a usable ToUnicode map; the arXiv
build of the same paper usually extracts cleanly.
"""
import logging
import re
from pathlib import Path
from typing import Optional

import requests

from .base import AlternateSourceDownloader
from ...exceptions import DownloadError

logger = logging.getLogger(__name__)

ARXIV_PDF_URL = "https://arxiv.org/pdf/{arxiv_id}.pdf"
PDF_MAGIC_BYTES = b"%PDF"

# New-style (2301.01234v2) and old-style (hep-th/9901001) identifiers
ARXIV_ID_PATTERNS = [
    re.compile(r'arXiv:\s*(\d{4}\.\d{4,5}(?:v\d+)?)', re.IGNORECASE),
    re.compile(r'arxiv\.org/(?:abs|pdf)/(\d{4}\.\d{4,5}(?:v\d+)?)', re.IGNORECASE),
    re.compile(r'arXiv:\s*([a-z\-]+(?:\.[A-Z]{2})?/\d{7}(?:v\d+)?)', re.IGNORECASE),
    re.compile(r'arxiv\.org/(?:abs|pdf)/([a-z\-]+(?:\.[A-Z]{2})?/\d{7}(?:v\d+)?)', re.IGNORECASE),
]


def detect_arxiv_id(text: str) -> Optional[str]:
    """Find an arXiv identifier in page text (usually the first page stamp)."""
    for pattern in ARXIV_ID_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(1)
    return None


def clean_arxiv_id(arxiv_id: str) -> str:
    """Strip whitespace and an ``arXiv:`` prefix."""
    arxiv_id = arxiv_id.strip()
    if arxiv_id.lower().startswith("arxiv:"):
        arxiv_id = arxiv_id[len("arxiv:"):]
    return arxiv_id.strip()


def sanitize_filename(name: str) -> str:
    """Make a safe ``.pdf`` file name from an identifier or title."""
    cleaned = re.sub(r'[^\w\s.-]', '_', name)[:200].strip()
    return f"{cleaned or 'paper'}.pdf"


class ArxivDownloader(AlternateSourceDownloader):
    """Download papers from arxiv.org by identifier."""

    def __init__(self, config, session: Optional[requests.Session] = None, timeout: float = 60):
        super().__init__(config)
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def download_dir(self) -> Path:
        return Path(self.config.download_dir).expanduser()

    def download_from_known_id(self, known_id: str) -> str:
        arxiv_id = clean_arxiv_id(known_id)
        if not arxiv_id:
            raise DownloadError("Empty arXiv identifier")

        url = ARXIV_PDF_URL.format(arxiv_id=arxiv_id)
        logger.info(f"Downloading arXiv PDF: {url}")

        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": "bibstruct/1.0 (academic PDF preprocessing)"},
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"arXiv download failed for {arxiv_id}: {e}") from e

        content = response.content
        max_bytes = self.config.max_download_bytes
        if len(content) > max_bytes:
            raise DownloadError(f"PDF file too large: {len(content)} bytes (max: {max_bytes})")
        if not content.startswith(PDF_MAGIC_BYTES):
            raise DownloadError(f"arXiv response for {arxiv_id} is not a PDF")

        self.download_dir.mkdir(parents=True, exist_ok=True)
        path = self.download_dir / sanitize_filename(f"arxiv_{arxiv_id}")
        path.write_bytes(content)

        logger.info(f"✓ arXiv PDF downloaded: {path} ({len(content)} bytes)")
        return str(path)
