"""Wires a complete pipeline from a ``Config``."""
import logging
from typing import Optional

from ..citations.linker import CitationLinker
from ..citations.span_extractor import CitationSpanExtractor
from ..config import Config
from ..engine.base import DisabledStructureEngine, StructureEngineClient
from ..engine.grobid import GrobidClient
from ..exceptions import ConfigurationError, LLMError
from ..extraction.document_extractor import DocumentExtractor
from ..extraction.page_extractor import PageExtractor
from ..providers.download.arxiv import ArxivDownloader
from ..providers.llm.base import BaseLLMProvider
from ..providers.llm.gemini import GEMINI_AVAILABLE, GeminiProvider
from ..providers.ocr.base import OCREngine
from ..providers.ocr.tesseract import TesseractOCR
from ..providers.ocr.vision import GeminiVisionOCR
from ..references.llm_parser import LLMReferenceFallbackParser
from ..references.section_parser import ReferenceSectionParser
from .orchestrator import ExtractionOrchestrator
from .store import DocumentStore, InMemoryStore

logger = logging.getLogger(__name__)


def build_ocr_engine(config: Config) -> Optional[OCREngine]:
    if not config.ocr_enabled:
        return None
    if config.ocr_engine == "tesseract":
        return TesseractOCR(config)
    if config.ocr_engine == "gemini":
        return GeminiVisionOCR(config, model_name=config.gemini_model_parsing)
    raise ConfigurationError(f"Unsupported OCR engine: {config.ocr_engine}")


def build_llm(config: Config) -> Optional[BaseLLMProvider]:
    if not GEMINI_AVAILABLE:
        logger.warning("Gemini provider unavailable. LLM reference fallback disabled.")
        return None
    if not config.gemini_api_key:
        logger.warning("Gemini API key not configured. LLM reference fallback disabled.")
        return None
    try:
        return GeminiProvider(config)
    except LLMError as e:
        logger.warning(f"Failed to initialize Gemini provider: {e}")
        return None


def build_engine(config: Config) -> StructureEngineClient:
    if not config.structure_engine_enabled:
        return DisabledStructureEngine()
    return GrobidClient(config)


def build_pipeline(
    config: Optional[Config] = None,
    store: Optional[DocumentStore] = None,
) -> ExtractionOrchestrator:
    """Build an orchestrator with real collaborators.

    Args:
        config: Configuration (loaded from the environment when omitted)
        store: Persistence (in-memory when omitted)

    Returns:
        Ready-to-use ExtractionOrchestrator
    """
    if config is None:
        config = Config.from_env()

    page_extractor = PageExtractor(config, ocr_engine=build_ocr_engine(config))
    downloader = ArxivDownloader(config) if config.alternate_source_enabled else None
    llm = build_llm(config)

    orchestrator = ExtractionOrchestrator(
        config,
        document_extractor=DocumentExtractor(config, page_extractor, downloader),
        engine=build_engine(config),
        llm_parser=LLMReferenceFallbackParser(llm, config) if llm is not None else None,
        section_parser=ReferenceSectionParser(config.reference_scan_pages),
        span_extractor=CitationSpanExtractor(config.reference_scan_pages),
        linker=CitationLinker(config.max_range_span),
        store=store or InMemoryStore(),
    )
    logger.info(
        f"Pipeline ready (engine={'on' if orchestrator.engine_enabled else 'off'}, "
        f"llm={'on' if llm else 'off'}, ocr={'on' if page_extractor.ocr_usable else 'off'})"
    )
    return orchestrator
