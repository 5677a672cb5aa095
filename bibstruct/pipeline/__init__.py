"""Document preprocessing pipeline and persistence."""
from .store import DocumentRecords, DocumentStore, InMemoryStore, SQLiteStore
from .orchestrator import ExtractionOrchestrator
from .builder import build_pipeline

__all__ = [
    "DocumentRecords",
    "DocumentStore",
    "InMemoryStore",
    "SQLiteStore",
    "ExtractionOrchestrator",
    "build_pipeline",
]
