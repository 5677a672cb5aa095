"""Per-document preprocessing pipeline.

Text is extracted first, then references are obtained by the first tier
that produces any:

1. ``structure_engine``: the structure engine on the current PDF
2. ``alternate_engine``: download an alternate copy once and run the
   structure engine on it
3. ``section_llm``: heuristic bibliography section handed to the language model
4. ``last_pages_llm``: when no bibliography header exists, the last pages
   of text handed to the language model
5. ``section_heuristic``: the numbered entries of the heuristic
   bibliography section, as parsed

Citation spans are then detected and linked, and everything is written to
the store, replacing whatever an earlier run left for the document.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ..citations.linker import CitationLinker
from ..citations.span_extractor import CitationSpanExtractor, SpanExtractionResult
from ..core.models import (
    DocumentText,
    EngineCitationSpan,
    Outcome,
    ProcessingState,
    ProcessingStatus,
    ReferenceProvenance,
    StepStatus,
    StructuredReference,
    TierAttempt,
)
from ..engine.base import DisabledStructureEngine, StructureEngineClient, StructuredDocument
from ..exceptions import (
    ConfigurationError,
    ExtractionFailure,
    LLMError,
    StructureEngineFailure,
)
from ..extraction.document_extractor import DocumentExtractor, last_pages_text
from ..references.llm_parser import LLMReferenceFallbackParser
from ..references.section_parser import ReferenceSection, ReferenceSectionParser
from .store import DocumentRecords, DocumentStore, InMemoryStore

logger = logging.getLogger(__name__)

TIER_STRUCTURE_ENGINE = "structure_engine"
TIER_ALTERNATE_ENGINE = "alternate_engine"
TIER_SECTION_LLM = "section_llm"
TIER_LAST_PAGES_LLM = "last_pages_llm"
TIER_SECTION_HEURISTIC = "section_heuristic"


@dataclass
class _Run:
    """Mutable state of one document run."""
    document_id: str
    original_pdf: str
    known_id: Optional[str]
    pdf_path: str
    document_text: Optional[DocumentText] = None
    structured: Optional[StructuredDocument] = None
    section: Optional[ReferenceSection] = None
    section_searched: bool = False
    alternate_tried: bool = False
    references: List[StructuredReference] = field(default_factory=list)
    provenance: Optional[ReferenceProvenance] = None
    attempts: List[TierAttempt] = field(default_factory=list)

    @property
    def has_usable_text(self) -> bool:
        return self.document_text is not None and self.document_text.has_usable_text


class ExtractionOrchestrator:
    """Runs the preprocessing pipeline for one document at a time.

    Args:
        config: Configuration
        document_extractor: Page text extraction (with alternate-source download)
        engine: Structure engine client
        llm_parser: Language-model reference parser
        section_parser: Heuristic bibliography section parser
        span_extractor: Citation span detection
        linker: Citation to reference linking
        store: Persistence (in-memory when omitted)
    """

    def __init__(
        self,
        config,
        document_extractor: DocumentExtractor,
        engine: Optional[StructureEngineClient] = None,
        llm_parser: Optional[LLMReferenceFallbackParser] = None,
        section_parser: Optional[ReferenceSectionParser] = None,
        span_extractor: Optional[CitationSpanExtractor] = None,
        linker: Optional[CitationLinker] = None,
        store: Optional[DocumentStore] = None,
    ):
        self.config = config
        self.document_extractor = document_extractor
        self.engine = engine or DisabledStructureEngine()
        self.llm_parser = llm_parser
        self.section_parser = section_parser or ReferenceSectionParser(config.reference_scan_pages)
        self.span_extractor = span_extractor or CitationSpanExtractor(config.reference_scan_pages)
        self.linker = linker or CitationLinker(config.max_range_span)
        self.store = store or InMemoryStore()

    @property
    def engine_enabled(self) -> bool:
        return bool(self.config.structure_engine_enabled) and not isinstance(
            self.engine, DisabledStructureEngine
        )

    @property
    def tiers(self) -> List[Tuple[str, Callable[[_Run], Optional[str]]]]:
        """Reference tiers in priority order.

        Each tier returns None when it was not applicable, else a short
        detail string; it has succeeded when ``run.references`` is filled.
        """
        return [
            (TIER_STRUCTURE_ENGINE, self._tier_structure_engine),
            (TIER_ALTERNATE_ENGINE, self._tier_alternate_engine),
            (TIER_SECTION_LLM, self._tier_section_llm),
            (TIER_LAST_PAGES_LLM, self._tier_last_pages_llm),
            (TIER_SECTION_HEURISTIC, self._tier_section_heuristic),
        ]

    def process(
        self,
        document_id: str,
        pdf_path: str,
        known_id: Optional[str] = None,
        force: bool = False,
    ) -> ProcessingStatus:
        """Preprocess one document.

        Args:
            document_id: Document id used for every stored record
            pdf_path: PDF to process
            known_id: Public identifier (arXiv id) for alternate-source download
            force: Re-process even if the document already completed

        Returns:
            Final processing status (the stored one, untouched, when the
            document already completed and ``force`` is False)
        """
        existing = self.store.get_status(document_id)
        if existing is not None and existing.is_completed and not force:
            logger.info(f"Document {document_id} already processed, skipping")
            return existing

        status = ProcessingStatus(
            document_id=document_id,
            state=ProcessingState.PROCESSING,
            started_at=datetime.now(),
            pdf_path=pdf_path,
        )
        self.store.save_status(status)
        logger.info(f"Processing document {document_id}: {pdf_path}")

        run = _Run(document_id=document_id, original_pdf=pdf_path, known_id=known_id, pdf_path=pdf_path)
        try:
            self._extract_text(run)
            self._obtain_references(run)
            span_result = self._extract_spans(run)
            engine_spans = self._engine_spans(run)
            links = self.linker.link(
                span_result.spans,
                run.references,
                span_result.references_start_page,
                engine_spans,
                run.references if run.provenance == ReferenceProvenance.STRUCTURE_ENGINE else [],
            )
            self.store.replace_document(DocumentRecords(
                document_id=document_id,
                pages=list(run.document_text.pages) if run.document_text else [],
                references=run.references,
                engine_spans=engine_spans,
                citation_spans=span_result.spans,
                links=links,
            ))
        except Exception as e:
            logger.error(f"Processing failed for {document_id}: {e}")
            status.state = ProcessingState.FAILED
            status.outcome = Outcome.FAILED
            status.error_message = str(e)
            status.completed_at = datetime.now()
            status.attempts = run.attempts
            self.store.save_status(status)
            raise

        self._finish(status, run, span_result)
        self.store.save_status(status)
        logger.info(
            f"✓ Document {document_id}: {status.outcome.value}, {status.reference_count} references "
            f"({status.reference_provenance.value if status.reference_provenance else 'none'}), "
            f"{status.citation_span_count} citation spans, {len(links)} links"
        )
        return status

    # Steps

    def _extract_text(self, run: _Run) -> None:
        start = time.time()
        try:
            run.document_text = self.document_extractor.extract_all(run.pdf_path, run.known_id)
        except ExtractionFailure as e:
            self._record(run, "text_extraction", False, start, str(e))
            logger.warning(f"Text extraction failed: {e}")
            return

        if run.document_text.pdf_path != run.original_pdf:
            # The extractor already switched to the alternate copy
            run.pdf_path = run.document_text.pdf_path
            run.alternate_tried = True
        self._record(
            run, "text_extraction", run.has_usable_text, start,
            f"{run.document_text.total_pages} pages, method={run.document_text.overall_method.value}",
        )

    def _obtain_references(self, run: _Run) -> None:
        for name, tier in self.tiers:
            start = time.time()
            try:
                detail = tier(run)
            except (StructureEngineFailure, ConfigurationError, LLMError) as e:
                self._record(run, name, False, start, str(e))
                logger.warning(f"Tier {name} failed: {e}")
                continue
            if detail is None:
                continue
            succeeded = bool(run.references)
            self._record(run, name, succeeded, start, detail)
            if succeeded:
                return
        logger.warning(f"No references obtained for document {run.document_id}")

    def _extract_spans(self, run: _Run) -> SpanExtractionResult:
        start = time.time()
        result = self.span_extractor.extract(run.pdf_path, run.document_id)
        detail = result.error or f"{result.annotation_count} annotation, {result.pattern_count} pattern"
        self._record(run, "citation_spans", result.error is None, start, detail)
        return result

    def _engine_spans(self, run: _Run) -> List[EngineCitationSpan]:
        if run.structured is None or run.provenance != ReferenceProvenance.STRUCTURE_ENGINE:
            return []
        return run.structured.to_citation_spans(run.document_id)

    # Tiers

    def _run_engine(self, run: _Run, pdf_path: str) -> str:
        structured = self.engine.process_fulltext(pdf_path)
        references = structured.to_references(run.document_id)
        if not references:
            raise StructureEngineFailure("Structure engine returned no references")
        run.structured = structured
        run.references = references
        run.provenance = ReferenceProvenance.STRUCTURE_ENGINE
        run.pdf_path = pdf_path
        return f"{len(references)} references from {pdf_path}"

    def _tier_structure_engine(self, run: _Run) -> Optional[str]:
        if not self.engine_enabled:
            return None
        return self._run_engine(run, run.pdf_path)

    def _tier_alternate_engine(self, run: _Run) -> Optional[str]:
        if not self.engine_enabled or run.alternate_tried:
            return None
        run.alternate_tried = True
        alternate = self.document_extractor.fetch_alternate(run.original_pdf, run.known_id)
        if not alternate or alternate == run.original_pdf:
            return None
        return self._run_engine(run, alternate)

    def _find_section(self, run: _Run) -> Optional[ReferenceSection]:
        if not run.section_searched:
            run.section_searched = True
            run.section = self.section_parser.find_section(run.document_text.pages)
        return run.section

    def _llm_usable(self, run: _Run) -> bool:
        return run.has_usable_text and self.llm_parser is not None and self.llm_parser.is_available

    def _tier_section_llm(self, run: _Run) -> Optional[str]:
        if not self._llm_usable(run):
            return None
        section = self._find_section(run)
        if section is None:
            return None
        return self._run_llm(run, section.as_llm_input(), f"section on page {section.start_page}")

    def _tier_last_pages_llm(self, run: _Run) -> Optional[str]:
        if not self._llm_usable(run) or self._find_section(run) is not None:
            return None
        text = last_pages_text(run.document_text.pages, self.config.last_pages_fallback)
        return self._run_llm(run, text, f"last {self.config.last_pages_fallback} pages")

    def _tier_section_heuristic(self, run: _Run) -> Optional[str]:
        if not run.has_usable_text:
            return None
        section = self._find_section(run)
        if section is None:
            return None
        run.references = section.to_references(run.document_id)
        if run.references:
            run.provenance = ReferenceProvenance.SECTION_HEURISTIC
        return f"{len(run.references)} numbered entries from page {section.start_page}"

    def _run_llm(self, run: _Run, text: str, source: str) -> str:
        references = self.llm_parser.parse(text, run.document_id)
        if references:
            run.references = references
            run.provenance = ReferenceProvenance.LLM_FALLBACK
        return f"{len(references)} references from {source}"

    # Bookkeeping

    @staticmethod
    def _record(run: _Run, tier: str, succeeded: bool, start: float, detail: str = "") -> None:
        elapsed = (time.time() - start) * 1000
        run.attempts.append(TierAttempt(tier=tier, succeeded=succeeded, elapsed_ms=elapsed, detail=detail))
        if succeeded:
            logger.info(f"✓ {tier} succeeded in {elapsed:.0f}ms: {detail}")
        else:
            logger.info(f"{tier} failed in {elapsed:.0f}ms: {detail}")

    def _finish(self, status: ProcessingStatus, run: _Run, span_result: SpanExtractionResult) -> None:
        text = run.document_text
        status.completed_at = datetime.now()
        status.pdf_path = run.pdf_path
        status.attempts = run.attempts
        status.reference_count = len(run.references)
        status.reference_provenance = run.provenance
        status.citation_span_count = len(span_result.spans)

        if text is not None:
            status.total_pages = text.total_pages
            status.extraction_method = text.overall_method
            status.quality_score = text.average_quality
            status.ocr_status = text.ocr_status

        if not self.engine_enabled:
            status.engine_status = StepStatus.SKIPPED
        elif run.provenance == ReferenceProvenance.STRUCTURE_ENGINE:
            status.engine_status = StepStatus.SUCCESS
        else:
            status.engine_status = StepStatus.FAILED

        if run.provenance == ReferenceProvenance.STRUCTURE_ENGINE:
            status.state = ProcessingState.COMPLETED
            status.outcome = Outcome.SUCCESS
        elif run.references or run.has_usable_text:
            status.state = ProcessingState.COMPLETED
            status.outcome = Outcome.PARTIAL
        else:
            status.state = ProcessingState.FAILED
            status.outcome = Outcome.FAILED
            status.error_message = "No usable text or references could be extracted"
