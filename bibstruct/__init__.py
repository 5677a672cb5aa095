"""bibstruct - bibliographic structure recovery for academic PDFs.

Reconstructs the bibliographic structure of a paper:
- Page text with garbled-text detection and extraction escalation
- Structured references from GROBID, or a language-model fallback
- In-text citation markers with page coordinates
- Citation to reference links with confidence scores
"""

from .config import Config
from .exceptions import (
    BibstructError,
    ConfigurationError,
    ConfigError,
    ValidationError,
    ExtractionFailure,
    StructureEngineFailure,
    DownloadError,
    OCRError,
    LLMError,
    LLMTimeoutError,
    RateLimitError,
    LLMParseFailure,
)
from .core.models import (
    BoundingBox,
    PageText,
    DocumentText,
    ReferenceEntry,
    StructuredReference,
    CitationSpan,
    EngineCitationSpan,
    CitationLink,
    ProcessingStatus,
    ExtractionMethod,
    ReferenceProvenance,
    CitationStyle,
    SpanProvenance,
    LinkMethod,
    ProcessingState,
    Outcome,
    StepStatus,
)
from .extraction import DocumentExtractor, PageExtractor
from .references import LLMReferenceFallbackParser, ReferenceSectionParser
from .citations import CitationLinker, CitationSpanExtractor
from .pipeline import ExtractionOrchestrator, InMemoryStore, SQLiteStore, build_pipeline

__version__ = "0.1.0"
__all__ = [
    "Config",
    "build_pipeline",
    "ExtractionOrchestrator",
    "DocumentExtractor",
    "PageExtractor",
    "ReferenceSectionParser",
    "LLMReferenceFallbackParser",
    "CitationSpanExtractor",
    "CitationLinker",
    "InMemoryStore",
    "SQLiteStore",
    "BoundingBox",
    "PageText",
    "DocumentText",
    "ReferenceEntry",
    "StructuredReference",
    "CitationSpan",
    "EngineCitationSpan",
    "CitationLink",
    "ProcessingStatus",
    "ExtractionMethod",
    "ReferenceProvenance",
    "CitationStyle",
    "SpanProvenance",
    "LinkMethod",
    "ProcessingState",
    "Outcome",
    "StepStatus",
    "BibstructError",
    "ConfigurationError",
    "ConfigError",
    "ValidationError",
    "ExtractionFailure",
    "StructureEngineFailure",
    "DownloadError",
    "OCRError",
    "LLMError",
    "LLMTimeoutError",
    "RateLimitError",
    "LLMParseFailure",
]
