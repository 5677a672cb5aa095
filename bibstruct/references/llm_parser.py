"""Language-model fallback for bibliography parsing.

When the structure engine cannot process a document, the bibliography
text is sent to a language model with a strict prompt. Long
bibliographies are cut into chunks of whole entries and parsed one after
another; timeouts are retried with linear backoff while any other failure
only loses that chunk.
"""
import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

from .fields import validate_doi, validate_year
from .section_parser import match_entry_start
from ..core.models import ReferenceProvenance, StructuredReference, new_id
from ..exceptions import ConfigurationError, LLMError, LLMParseFailure, LLMTimeoutError
from ..providers.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)

# Model confidence is scaled down: less trusted than structured extraction
CONFIDENCE_SCALE = 0.7
DEFAULT_MODEL_CONFIDENCE = 0.8
LLM_SOURCE_MARKER = "<!-- source: llm -->"
ELLIPSIS_VALUES = {"...", "…", "[...]", "(...)"}

REFERENCE_PROMPT = """You are a reference parser for academic papers. Extract every bibliographic reference from the text below.

**CRITICAL INSTRUCTIONS:**
1. Output ONLY a JSON array of reference objects. No markdown, no explanation, no code blocks.
2. If the text is unreadable or contains no references, output an empty array: []
3. Entries usually start with markers like [1], 1., (1) or 1. Keep one object per entry, in order.
4. Never truncate an entry and never use "..." or any other placeholder for text you did not copy.
5. Do not invent anything. Any field you cannot read from the text must be null.
6. Extract a DOI only if it is explicitly present (pattern: 10.xxxx/xxxx).
7. Always include the complete raw text of each entry in "raw".

**Schema of each array element:**
{{"refIndex": <entry number or null>, "refLabel": "<[1] or (1) or null>", "raw": "<complete raw text>", "authors": [{{"family": "<last name>", "given": "<first name>", "raw": "<name as printed>"}}], "title": "<title or null>", "year": <4-digit year or null>, "venue": "<journal or conference or null>", "doi": "<10.xxxx/xxxx or null>", "url": "<http(s)://... or null>", "confidence": <0.0-1.0>}}

**Example input:**
[1] Smith, J. and Doe, A. Deep Learning for Computer Vision. In CVPR 2020, pp. 123-456. DOI: 10.1109/CVPR.2020.00123

**Example output:**
[{{"refIndex":1,"refLabel":"[1]","raw":"Smith, J. and Doe, A. Deep Learning for Computer Vision. In CVPR 2020, pp. 123-456. DOI: 10.1109/CVPR.2020.00123","authors":[{{"family":"Smith","given":"J.","raw":"Smith, J."}},{{"family":"Doe","given":"A.","raw":"Doe, A."}}],"title":"Deep Learning for Computer Vision","year":2020,"venue":"CVPR","doi":"10.1109/CVPR.2020.00123","url":null,"confidence":0.95}}]

**Text:**
{text}

**Remember:** output ONLY the JSON array."""


def estimate_entry_count(text: str) -> int:
    """Number of lines that look like the start of a numbered entry."""
    return sum(1 for line in text.splitlines() if match_entry_start(line.strip()))


def split_into_chunks(text: str, entries_per_chunk: int) -> List[str]:
    """Split text into chunks of whole entries.

    Boundaries fall only on entry-start lines. Text before the first entry
    stays with the first chunk.
    """
    lines = text.splitlines()
    starts = [i for i, line in enumerate(lines) if match_entry_start(line.strip())]
    if len(starts) <= entries_per_chunk:
        return [text]

    boundaries = starts[entries_per_chunk::entries_per_chunk]
    chunks = []
    previous = 0
    for boundary in boundaries:
        chunks.append("\n".join(lines[previous:boundary]).strip())
        previous = boundary
    chunks.append("\n".join(lines[previous:]).strip())
    return [chunk for chunk in chunks if chunk]


# JSON repair

def _strip_fences(text: str) -> str:
    fenced = re.search(r"```(?:json|JSON)?\s*(.*?)\s*```", text, re.DOTALL)
    if fenced:
        return fenced.group(1)
    return text.replace("```json", "").replace("```", "")


def _strip_comments(text: str) -> str:
    """Remove HTML comments and ``//`` / ``/* */`` comments outside strings."""
    text = re.sub(r"<!--.*?-->", "", text, flags=re.DOTALL)
    out = []
    i, n = 0, len(text)
    in_string = escaped = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _fix_trailing_commas(text: str) -> str:
    return re.sub(r",\s*([}\]])", r"\1", text)


def _balanced_spans(text: str, open_ch: str, close_ch: str):
    """Yield substrings that form balanced ``open_ch ... close_ch`` blocks."""
    for start, ch in enumerate(text):
        if ch != open_ch:
            continue
        depth = 0
        in_string = escaped = False
        for end in range(start, len(text)):
            c = text[end]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c == open_ch:
                depth += 1
            elif c == close_ch:
                depth -= 1
                if depth == 0:
                    yield text[start:end + 1]
                    break


def _try_load(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _fix_truncated_json(json_str: str) -> str:
    """Close an unterminated string and any open arrays/objects."""
    result = json_str.rstrip()
    if result.endswith("\\"):
        result = result[:-1]

    stack = []
    in_string = escaped = False
    for char in result:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "[{":
            stack.append("]" if char == "[" else "}")
        elif char in "]}" and stack:
            stack.pop()

    if in_string:
        result += '"'
    result = _fix_trailing_commas(result.rstrip().rstrip(","))
    return result + "".join(reversed(stack))


def parse_llm_json(response: str) -> List[Dict[str, Any]]:
    """Turn a model reply into a list of reference dicts.

    Tries, in order: the cleaned reply as-is, the first balanced object
    with a ``references`` key, the first balanced array, and a truncation
    repair.

    Raises:
        LLMParseFailure: If every strategy fails
    """
    cleaned = _fix_trailing_commas(_strip_comments(_strip_fences(response or "")).strip())

    candidates = []
    direct = _try_load(cleaned)
    if direct is not None:
        candidates.append(direct)
    else:
        for block in _balanced_spans(cleaned, "{", "}"):
            loaded = _try_load(block)
            if isinstance(loaded, dict) and "references" in loaded:
                candidates.append(loaded)
                break
        if not candidates:
            for block in _balanced_spans(cleaned, "[", "]"):
                loaded = _try_load(block)
                if isinstance(loaded, list):
                    candidates.append(loaded)
                    break
        if not candidates:
            repaired = _try_load(_fix_truncated_json(cleaned))
            if repaired is not None:
                candidates.append(repaired)

    for candidate in candidates:
        if isinstance(candidate, list):
            return [item for item in candidate if isinstance(item, dict)]
        if isinstance(candidate, dict) and isinstance(candidate.get("references"), list):
            return [item for item in candidate["references"] if isinstance(item, dict)]

    raise LLMParseFailure(f"Could not parse model response as reference JSON ({len(response or '')} chars)")


def _clean_str(value: Any) -> Optional[str]:
    if value is None or not isinstance(value, (str, int, float)):
        return None
    text = str(value).strip()
    if not text or text in ELLIPSIS_VALUES or text.lower() == "null":
        return None
    return text


def _join_authors(authors: Any) -> Optional[str]:
    if not isinstance(authors, list) or not authors:
        return _clean_str(authors)
    names = []
    for author in authors:
        if isinstance(author, dict):
            given = _clean_str(author.get("given")) or ""
            family = _clean_str(author.get("family")) or ""
            name = f"{given} {family}".strip() or _clean_str(author.get("raw"))
        else:
            name = _clean_str(author)
        if name:
            names.append(name)
    return ", ".join(names) if names else None


def _confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = DEFAULT_MODEL_CONFIDENCE
    return min(1.0, max(0.0, confidence)) * CONFIDENCE_SCALE


def _ref_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        index = int(value)
    except (TypeError, ValueError):
        return None
    return index if index > 0 else None


class LLMReferenceFallbackParser:
    """Parses bibliography text into structured references with a language model.

    Args:
        llm: Language-model provider (None raises ConfigurationError on use)
        config: Configuration (chunking and retry settings are read)
        sleep: Sleep function used for backoff
    """

    def __init__(
        self,
        llm: Optional[BaseLLMProvider],
        config,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm = llm
        self.config = config
        self._sleep = sleep

    @property
    def is_available(self) -> bool:
        return self.llm is not None

    def build_prompt(self, text: str) -> str:
        return REFERENCE_PROMPT.format(text=text)

    def should_chunk(self, text: str) -> bool:
        return (
            estimate_entry_count(text) > self.config.llm_chunk_threshold_refs
            or len(text) > self.config.llm_chunk_threshold_chars
        )

    def parse(self, reference_text: str, document_id: str) -> List[StructuredReference]:
        """Parse bibliography text into references.

        Args:
            reference_text: Bibliography text (formatted entries or raw page text)
            document_id: Owning document

        Returns:
            References in bibliography order with unique numbers

        Raises:
            ConfigurationError: If no language model is configured
        """
        if self.llm is None:
            raise ConfigurationError("No language model configured for reference parsing")
        if not reference_text or not reference_text.strip():
            return []

        if self.should_chunk(reference_text):
            chunks = split_into_chunks(reference_text, self.config.llm_chunk_size)
        else:
            chunks = [reference_text]
        logger.info(f"Parsing {len(reference_text)} chars of references in {len(chunks)} chunk(s)")

        references: List[StructuredReference] = []
        used_numbers = set()
        for chunk_no, chunk in enumerate(chunks, 1):
            start = time.time()
            try:
                items = self._parse_chunk(chunk)
            except (LLMError, ConfigurationError) as e:
                logger.warning(f"Chunk {chunk_no}/{len(chunks)} abandoned: {e}")
                continue
            for item in items:
                reference = self._to_reference(item, document_id, len(references) + 1, used_numbers)
                if reference is not None:
                    references.append(reference)
            elapsed = (time.time() - start) * 1000
            logger.info(f"✓ Chunk {chunk_no}/{len(chunks)}: {len(items)} references in {elapsed:.0f}ms")

        logger.info(f"LLM fallback produced {len(references)} references")
        return references

    def _parse_chunk(self, chunk: str) -> List[Dict[str, Any]]:
        prompt = self.build_prompt(chunk)
        attempts = 1 + max(0, self.config.llm_max_retries)
        for attempt in range(1, attempts + 1):
            try:
                response = self.llm.chat(prompt)
            except LLMTimeoutError as e:
                if attempt == attempts:
                    raise
                delay = self.config.llm_retry_base_delay * attempt
                logger.warning(f"LLM timeout (attempt {attempt}/{attempts}), retrying in {delay:.0f}s: {e}")
                self._sleep(delay)
                continue
            return parse_llm_json(response)
        return []

    def _to_reference(
        self,
        item: Dict[str, Any],
        document_id: str,
        position: int,
        used_numbers: set,
    ) -> Optional[StructuredReference]:
        raw = _clean_str(item.get("raw")) or _clean_str(item.get("title"))
        if raw is None:
            return None
        raw = raw.replace(LLM_SOURCE_MARKER, "").strip()

        number = _ref_index(item.get("refIndex"))
        if number is None or number in used_numbers:
            number = position
            while number in used_numbers:
                number += 1
        used_numbers.add(number)

        return StructuredReference(
            id=new_id(),
            document_id=document_id,
            raw_text=raw,
            provenance=ReferenceProvenance.LLM_FALLBACK,
            confidence=_confidence(item.get("confidence", DEFAULT_MODEL_CONFIDENCE)),
            number=number,
            external_ref_id=f"llm-ref-{number}",
            authors=_join_authors(item.get("authors")),
            title=_clean_str(item.get("title")),
            venue=_clean_str(item.get("venue")),
            year=validate_year(item.get("year")),
            doi=validate_doi(item.get("doi")),
        )
