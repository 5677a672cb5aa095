"""Page and document text extraction."""
from .quality import is_garbled, quality_score
from .page_extractor import PageExtractor, PdftotextTool
from .document_extractor import DocumentExtractor, last_pages_text

__all__ = [
    "is_garbled",
    "quality_score",
    "PageExtractor",
    "PdftotextTool",
    "DocumentExtractor",
    "last_pages_text",
]
