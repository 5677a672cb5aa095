"""Bibliography parsing: heuristic section parser and language-model fallback."""
from .section_parser import ReferenceSection, ReferenceSectionParser, format_entries
from .llm_parser import LLMReferenceFallbackParser, parse_llm_json

__all__ = [
    "ReferenceSection",
    "ReferenceSectionParser",
    "format_entries",
    "LLMReferenceFallbackParser",
    "parse_llm_json",
]
