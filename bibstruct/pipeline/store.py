"""Persistence for pipeline output.

Stores are written per document and always replace: every write for a
document first deletes the rows it supersedes, so an abandoned run never
leaves stale rows mixed with a later one.
"""
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..core.models import (
    BoundingBox,
    CitationLink,
    CitationSpan,
    CitationStyle,
    EngineCitationSpan,
    ExtractionMethod,
    LinkMethod,
    Outcome,
    PageText,
    ProcessingState,
    ProcessingStatus,
    ReferenceProvenance,
    SpanProvenance,
    StepStatus,
    StructuredReference,
    TierAttempt,
)

logger = logging.getLogger(__name__)


@dataclass
class DocumentRecords:
    """Everything one processing pass produced for a document."""
    document_id: str
    pages: List[PageText] = field(default_factory=list)
    references: List[StructuredReference] = field(default_factory=list)
    engine_spans: List[EngineCitationSpan] = field(default_factory=list)
    citation_spans: List[CitationSpan] = field(default_factory=list)
    links: List[CitationLink] = field(default_factory=list)


class DocumentStore(ABC):
    """Persistence interface used by the orchestrator."""

    @abstractmethod
    def get_status(self, document_id: str) -> Optional[ProcessingStatus]:
        pass

    @abstractmethod
    def save_status(self, status: ProcessingStatus) -> None:
        pass

    @abstractmethod
    def replace_document(self, records: DocumentRecords) -> None:
        """Delete every stored row of the document, then insert ``records``."""
        pass

    @abstractmethod
    def delete_document(self, document_id: str) -> None:
        pass

    @abstractmethod
    def get_pages(self, document_id: str) -> List[PageText]:
        pass

    @abstractmethod
    def get_references(self, document_id: str) -> List[StructuredReference]:
        pass

    @abstractmethod
    def get_engine_spans(self, document_id: str) -> List[EngineCitationSpan]:
        pass

    @abstractmethod
    def get_citation_spans(self, document_id: str) -> List[CitationSpan]:
        pass

    @abstractmethod
    def get_links(self, document_id: str) -> List[CitationLink]:
        pass

    def get_engine_references(self, document_id: str) -> List[StructuredReference]:
        return [
            ref for ref in self.get_references(document_id)
            if ref.provenance == ReferenceProvenance.STRUCTURE_ENGINE
        ]


class InMemoryStore(DocumentStore):
    """Dictionary-backed store for tests and embedding."""

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[str, ProcessingStatus] = {}
        self._records: Dict[str, DocumentRecords] = {}

    def get_status(self, document_id: str) -> Optional[ProcessingStatus]:
        with self._lock:
            status = self._statuses.get(document_id)
            return deepcopy(status) if status else None

    def save_status(self, status: ProcessingStatus) -> None:
        with self._lock:
            self._statuses[status.document_id] = deepcopy(status)

    def replace_document(self, records: DocumentRecords) -> None:
        with self._lock:
            self._records[records.document_id] = deepcopy(records)

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._records.pop(document_id, None)
            self._statuses.pop(document_id, None)

    def _get(self, document_id: str) -> DocumentRecords:
        with self._lock:
            return deepcopy(self._records.get(document_id, DocumentRecords(document_id)))

    def get_pages(self, document_id: str) -> List[PageText]:
        return self._get(document_id).pages

    def get_references(self, document_id: str) -> List[StructuredReference]:
        return self._get(document_id).references

    def get_engine_spans(self, document_id: str) -> List[EngineCitationSpan]:
        return self._get(document_id).engine_spans

    def get_citation_spans(self, document_id: str) -> List[CitationSpan]:
        return self._get(document_id).citation_spans

    def get_links(self, document_id: str) -> List[CitationLink]:
        return self._get(document_id).links


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS processing_status (
    document_id TEXT PRIMARY KEY,
    state TEXT NOT NULL,
    outcome TEXT,
    started_at TEXT,
    completed_at TEXT,
    total_pages INTEGER NOT NULL DEFAULT 0,
    extraction_method TEXT,
    quality_score REAL,
    engine_status TEXT,
    ocr_status TEXT,
    reference_provenance TEXT,
    reference_count INTEGER NOT NULL DEFAULT 0,
    citation_span_count INTEGER NOT NULL DEFAULT 0,
    pdf_path TEXT,
    error_message TEXT,
    attempts TEXT
);

CREATE TABLE IF NOT EXISTS pages (
    document_id TEXT NOT NULL,
    page_num INTEGER NOT NULL,
    text TEXT NOT NULL,
    method TEXT NOT NULL,
    is_garbled INTEGER NOT NULL,
    quality_score REAL NOT NULL,
    ocr_confidence REAL,
    PRIMARY KEY (document_id, page_num)
);

CREATE TABLE IF NOT EXISTS refs (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    raw_text TEXT NOT NULL,
    provenance TEXT NOT NULL,
    confidence REAL NOT NULL,
    number INTEGER,
    external_ref_id TEXT,
    authors TEXT,
    title TEXT,
    venue TEXT,
    year INTEGER,
    doi TEXT,
    page_num INTEGER,
    bboxes TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS engine_spans (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    page_num INTEGER NOT NULL,
    raw_text TEXT NOT NULL,
    ref_type TEXT NOT NULL,
    xml_id TEXT,
    target_xml_id TEXT,
    confidence REAL NOT NULL,
    bboxes TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS citation_spans (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    page_num INTEGER NOT NULL,
    bbox TEXT NOT NULL,
    raw_text TEXT NOT NULL,
    style TEXT NOT NULL,
    provenance TEXT NOT NULL,
    confidence REAL NOT NULL,
    dest_page INTEGER,
    dest_y REAL
);

CREATE TABLE IF NOT EXISTS citation_links (
    document_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    citation_span_id TEXT NOT NULL,
    reference_id TEXT NOT NULL,
    method TEXT NOT NULL,
    confidence REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_refs_document ON refs(document_id);
CREATE INDEX IF NOT EXISTS idx_engine_spans_document ON engine_spans(document_id);
CREATE INDEX IF NOT EXISTS idx_citation_spans_document ON citation_spans(document_id);
CREATE INDEX IF NOT EXISTS idx_citation_links_document ON citation_links(document_id);
"""

DOCUMENT_TABLES = ("pages", "refs", "engine_spans", "citation_spans", "citation_links")


def _boxes_json(boxes: List[BoundingBox]) -> str:
    return json.dumps([b.to_dict() for b in boxes])


def _boxes_from_json(value: str) -> List[BoundingBox]:
    return [BoundingBox.from_dict(b) for b in json.loads(value or "[]")]


def _enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(DocumentStore):
    """SQLite-backed store.

    Each ``replace_document`` runs in one transaction: the document's rows
    are deleted from every table and the new ones inserted, or nothing
    changes.

    Args:
        path: Database file (``":memory:"`` for a private in-memory database)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # Status

    def get_status(self, document_id: str) -> Optional[ProcessingStatus]:
        rows = self._query("SELECT * FROM processing_status WHERE document_id = ?", (document_id,))
        if not rows:
            return None
        row = rows[0]
        return ProcessingStatus(
            document_id=row["document_id"],
            state=ProcessingState(row["state"]),
            outcome=_enum(Outcome, row["outcome"]),
            started_at=_datetime(row["started_at"]),
            completed_at=_datetime(row["completed_at"]),
            total_pages=row["total_pages"],
            extraction_method=_enum(ExtractionMethod, row["extraction_method"]),
            quality_score=row["quality_score"],
            engine_status=_enum(StepStatus, row["engine_status"]),
            ocr_status=_enum(StepStatus, row["ocr_status"]),
            reference_provenance=_enum(ReferenceProvenance, row["reference_provenance"]),
            reference_count=row["reference_count"],
            citation_span_count=row["citation_span_count"],
            pdf_path=row["pdf_path"],
            error_message=row["error_message"],
            attempts=[TierAttempt(**a) for a in json.loads(row["attempts"] or "[]")],
        )

    def save_status(self, status: ProcessingStatus) -> None:
        data = status.to_dict()
        data["attempts"] = json.dumps([asdict(a) for a in status.attempts])
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT OR REPLACE INTO processing_status ({columns}) VALUES ({placeholders})",
                tuple(data.values()),
            )

    # Document rows

    def delete_document(self, document_id: str) -> None:
        with self._lock, self._conn:
            self._delete_rows(self._conn.cursor(), document_id)
            self._conn.execute("DELETE FROM processing_status WHERE document_id = ?", (document_id,))

    @staticmethod
    def _delete_rows(cursor: sqlite3.Cursor, document_id: str) -> None:
        for table in DOCUMENT_TABLES:
            cursor.execute(f"DELETE FROM {table} WHERE document_id = ?", (document_id,))

    def replace_document(self, records: DocumentRecords) -> None:
        document_id = records.document_id
        with self._lock, self._conn:
            cursor = self._conn.cursor()
            self._delete_rows(cursor, document_id)

            # Insert pages
            cursor.executemany(
                "INSERT INTO pages (document_id, page_num, text, method, is_garbled, quality_score, "
                "ocr_confidence) VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (document_id, p.page_num, p.text, p.method.value, int(p.is_garbled),
                     p.quality_score, p.ocr_confidence)
                    for p in records.pages
                ],
            )

            # Insert references
            cursor.executemany(
                "INSERT INTO refs (id, document_id, position, raw_text, provenance, confidence, number, "
                "external_ref_id, authors, title, venue, year, doi, page_num, bboxes) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (r.id, document_id, i, r.raw_text, r.provenance.value, r.confidence, r.number,
                     r.external_ref_id, r.authors, r.title, r.venue, r.year, r.doi, r.page_num,
                     _boxes_json(r.bboxes))
                    for i, r in enumerate(records.references)
                ],
            )

            # Insert structure engine spans
            cursor.executemany(
                "INSERT INTO engine_spans (id, document_id, position, page_num, raw_text, ref_type, "
                "xml_id, target_xml_id, confidence, bboxes) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (s.id, document_id, i, s.page_num, s.raw_text, s.ref_type, s.xml_id,
                     s.target_xml_id, s.confidence, _boxes_json(s.bboxes))
                    for i, s in enumerate(records.engine_spans)
                ],
            )

            # Insert citation spans
            cursor.executemany(
                "INSERT INTO citation_spans (id, document_id, position, page_num, bbox, raw_text, style, "
                "provenance, confidence, dest_page, dest_y) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (s.id, document_id, i, s.page_num, json.dumps(s.bbox.to_dict()), s.raw_text,
                     s.style.value, s.provenance.value, s.confidence, s.dest_page, s.dest_y)
                    for i, s in enumerate(records.citation_spans)
                ],
            )

            # Insert links
            cursor.executemany(
                "INSERT INTO citation_links (document_id, position, citation_span_id, reference_id, "
                "method, confidence) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (document_id, i, l.citation_span_id, l.reference_id, l.method.value, l.confidence)
                    for i, l in enumerate(records.links)
                ],
            )

        logger.debug(
            f"Stored document {document_id}: {len(records.pages)} pages, "
            f"{len(records.references)} references, {len(records.citation_spans)} spans, "
            f"{len(records.links)} links"
        )

    def get_pages(self, document_id: str) -> List[PageText]:
        rows = self._query(
            "SELECT * FROM pages WHERE document_id = ? ORDER BY page_num", (document_id,)
        )
        return [
            PageText(
                page_num=row["page_num"],
                text=row["text"],
                method=ExtractionMethod(row["method"]),
                is_garbled=bool(row["is_garbled"]),
                quality_score=row["quality_score"],
                ocr_confidence=row["ocr_confidence"],
            )
            for row in rows
        ]

    def get_references(self, document_id: str) -> List[StructuredReference]:
        rows = self._query(
            "SELECT * FROM refs WHERE document_id = ? ORDER BY position", (document_id,)
        )
        return [
            StructuredReference(
                id=row["id"],
                document_id=row["document_id"],
                raw_text=row["raw_text"],
                provenance=ReferenceProvenance(row["provenance"]),
                confidence=row["confidence"],
                number=row["number"],
                external_ref_id=row["external_ref_id"],
                authors=row["authors"],
                title=row["title"],
                venue=row["venue"],
                year=row["year"],
                doi=row["doi"],
                page_num=row["page_num"],
                bboxes=_boxes_from_json(row["bboxes"]),
            )
            for row in rows
        ]

    def get_engine_spans(self, document_id: str) -> List[EngineCitationSpan]:
        rows = self._query(
            "SELECT * FROM engine_spans WHERE document_id = ? ORDER BY position", (document_id,)
        )
        return [
            EngineCitationSpan(
                id=row["id"],
                document_id=row["document_id"],
                page_num=row["page_num"],
                raw_text=row["raw_text"],
                ref_type=row["ref_type"],
                xml_id=row["xml_id"],
                target_xml_id=row["target_xml_id"],
                confidence=row["confidence"],
                bboxes=_boxes_from_json(row["bboxes"]),
            )
            for row in rows
        ]

    def get_citation_spans(self, document_id: str) -> List[CitationSpan]:
        rows = self._query(
            "SELECT * FROM citation_spans WHERE document_id = ? ORDER BY position", (document_id,)
        )
        return [
            CitationSpan(
                id=row["id"],
                document_id=row["document_id"],
                page_num=row["page_num"],
                bbox=BoundingBox.from_dict(json.loads(row["bbox"])),
                raw_text=row["raw_text"],
                style=CitationStyle(row["style"]),
                provenance=SpanProvenance(row["provenance"]),
                confidence=row["confidence"],
                dest_page=row["dest_page"],
                dest_y=row["dest_y"],
            )
            for row in rows
        ]

    def get_links(self, document_id: str) -> List[CitationLink]:
        rows = self._query(
            "SELECT * FROM citation_links WHERE document_id = ? ORDER BY position", (document_id,)
        )
        return [
            CitationLink(
                citation_span_id=row["citation_span_id"],
                reference_id=row["reference_id"],
                method=LinkMethod(row["method"]),
                confidence=row["confidence"],
            )
            for row in rows
        ]
