"""GROBID REST client."""
import logging
import threading
from pathlib import Path
from typing import Dict, Optional

import fitz  # PyMuPDF
import requests

from .base import EngineInfo, StructureEngineClient, StructuredDocument
from .process_manager import GrobidProcessManager
from .tei import TEIParser
from ..exceptions import StructureEngineFailure

logger = logging.getLogger(__name__)

TEI_COORDINATE_ELEMENTS = "persName,figure,ref,biblStruct,formula"


def pdf_page_heights(pdf_path: str) -> Dict[int, float]:
    """Page heights of a PDF keyed by 1-indexed page number."""
    try:
        with fitz.open(pdf_path) as doc:
            return {index + 1: page.rect.height for index, page in enumerate(doc)}
    except (RuntimeError, ValueError, OSError) as e:
        logger.debug(f"Could not read page sizes of {pdf_path}: {e}")
        return {}


class GrobidClient(StructureEngineClient):
    """Structure engine backed by a GROBID server.

    The server is reached at ``config.grobid_url``. When it is not
    answering and ``config.grobid_autostart`` is set, a local server is
    downloaded, built and launched through the process manager on first
    use; the check-and-start runs under a lock.

    Args:
        config: Configuration
        process_manager: Manager used to launch a local server
        session: HTTP session
    """

    def __init__(
        self,
        config,
        process_manager: Optional[GrobidProcessManager] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.process_manager = process_manager or GrobidProcessManager(config, session=self.session)
        self._init_lock = threading.Lock()
        self.initialized = False

    @property
    def server_url(self) -> str:
        return self.config.grobid_url.rstrip("/")

    def _initialize(self) -> None:
        with self._init_lock:
            if self.initialized:
                return
            if self.process_manager.is_healthy():
                self.initialized = True
            elif self.config.grobid_autostart:
                logger.info("Initializing GROBID server...")
                if not self.process_manager.start():
                    raise StructureEngineFailure("Failed to start GROBID server")
                self.initialized = True
            else:
                raise StructureEngineFailure(f"GROBID server not reachable at {self.server_url}")
            logger.info(f"✓ GROBID ready at: {self.server_url}")

    def is_available(self) -> bool:
        return self.initialized or self.process_manager.is_healthy()

    def info(self) -> EngineInfo:
        return EngineInfo(
            version=f"{self.config.grobid_version} (REST API)",
            server_url=self.server_url,
            initialized=self.initialized,
        )

    def process_fulltext(self, pdf_path: str) -> StructuredDocument:
        return self._process(
            pdf_path,
            "processFulltextDocument",
            {
                "consolidateHeader": "1",
                "consolidateCitations": "1",
                "includeRawCitations": "1",
                "includeRawAffiliations": "0",
                "teiCoordinates": TEI_COORDINATE_ELEMENTS,
            },
        )

    def process_header(self, pdf_path: str) -> StructuredDocument:
        return self._process(pdf_path, "processHeaderDocument", {"consolidateHeader": "1"})

    def _process(self, pdf_path: str, service: str, fields: Dict[str, str]) -> StructuredDocument:
        path = Path(pdf_path)
        if not path.exists():
            raise StructureEngineFailure(f"PDF file not found: {pdf_path}")

        self._initialize()
        logger.info(f"GROBID {service}: {path.name}")

        try:
            with open(path, "rb") as fh:
                response = self.session.post(
                    f"{self.server_url}/api/{service}",
                    files={"input": (path.name, fh, "application/pdf")},
                    data=fields,
                    timeout=self.config.grobid_request_timeout,
                )
        except requests.exceptions.Timeout as e:
            raise StructureEngineFailure(f"GROBID timed out on {path.name}") from e
        except requests.exceptions.RequestException as e:
            raise StructureEngineFailure(f"GROBID request failed: {e}") from e

        if response.status_code != 200:
            raise StructureEngineFailure(f"GROBID API error: HTTP {response.status_code}")

        tei_xml = response.text
        logger.info(f"Received TEI XML ({len(tei_xml)} chars)")
        return TEIParser(pdf_page_heights(str(path))).parse(tei_xml)
