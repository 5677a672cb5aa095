"""In-text citation detection and citation-to-reference linking."""
from .span_extractor import CitationSpanExtractor, SpanExtractionResult, detect_style, looks_like_citation
from .linker import CitationLinker, parse_author_year, parse_numeric

__all__ = [
    "CitationSpanExtractor",
    "SpanExtractionResult",
    "detect_style",
    "looks_like_citation",
    "CitationLinker",
    "parse_author_year",
    "parse_numeric",
]
