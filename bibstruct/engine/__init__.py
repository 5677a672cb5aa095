"""Structure engine (GROBID) client, TEI parsing and server lifecycle."""
from .base import (
    DisabledStructureEngine,
    EngineInfo,
    StructureEngineClient,
    StructuredDocument,
)
from .grobid import GrobidClient
from .process_manager import GrobidProcessManager
from .tei import TEIParser, parse_tei

__all__ = [
    "DisabledStructureEngine",
    "EngineInfo",
    "StructureEngineClient",
    "StructuredDocument",
    "GrobidClient",
    "GrobidProcessManager",
    "TEIParser",
    "parse_tei",
]
