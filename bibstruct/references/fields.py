"""Field-level helpers shared by the reference parsers."""
import re
from typing import Any, Optional

# Full-string DOI validation
DOI_PATTERN = re.compile(r'^10\.\d{4,9}/[-._;()/:A-Z0-9]+$', re.IGNORECASE)
# DOI anywhere in free text
DOI_SEARCH_PATTERN = re.compile(r'10\.\d{4,9}/[-._;()/:A-Z0-9]+', re.IGNORECASE)
YEAR_PATTERN = re.compile(r'\b(19\d{2}|20\d{2})\b')

MIN_YEAR = 1900
MAX_YEAR = 2099


def validate_doi(value: Any) -> Optional[str]:
    """Return a cleaned DOI, or None when it does not look like one."""
    if not value or not isinstance(value, str):
        return None
    doi = value.strip()
    doi = re.sub(r'^(?:https?://(?:dx\.)?doi\.org/|doi:\s*)', '', doi, flags=re.IGNORECASE)
    doi = doi.rstrip(".,;")
    return doi if DOI_PATTERN.match(doi) else None


def validate_year(value: Any) -> Optional[int]:
    """Return the year as an int when it falls in 1900-2099."""
    if value is None or isinstance(value, bool):
        return None
    try:
        year = int(str(value).strip()[:4])
    except ValueError:
        return None
    return year if MIN_YEAR <= year <= MAX_YEAR else None


def find_doi(text: str) -> Optional[str]:
    """First valid DOI appearing anywhere in ``text``."""
    for match in DOI_SEARCH_PATTERN.finditer(text or ""):
        doi = validate_doi(match.group(0))
        if doi:
            return doi
    return None


def find_year(text: str) -> Optional[int]:
    """Last 19xx/20xx token in ``text``."""
    years = YEAR_PATTERN.findall(text or "")
    return int(years[-1]) if years else None
