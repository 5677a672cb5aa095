"""Configuration management for bibstruct."""
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv


def _default_workers() -> int:
    return min(8, os.cpu_count() or 1)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() == "true"


@dataclass
class Config:
    """bibstruct configuration.

    Attributes:
        gemini_api_key: API key for Google Gemini (LLM fallback and vision OCR)
        gemini_model_parsing: Gemini model used for reference parsing
        structure_engine_enabled: Whether the GROBID structure engine is used at all
        grobid_url: Base URL of the GROBID server
        grobid_version: GROBID release to download and build
        grobid_install_dir: Where GROBID sources, build and log live
        grobid_autostart: Download/build/launch GROBID locally on first use
        grobid_startup_timeout: Seconds to wait for /api/isalive after launch
        grobid_request_timeout: Seconds to wait for one fulltext request
        pdftotext_enabled: Allow the poppler ``pdftotext`` escalation step
        ocr_enabled: Allow the OCR escalation step
        ocr_engine: 'tesseract' or 'gemini'
        ocr_language: Tesseract language code(s)
        ocr_dpi: Render DPI for OCR
        ocr_engine_mode: Tesseract --oem value
        alternate_source_enabled: Re-download garbled/failed papers from arXiv
        download_dir: Directory for alternate-source downloads
        max_download_bytes: Reject downloads larger than this
        page_workers: Worker threads for per-page extraction
        garbled_sample_size: Pages sampled when judging a document garbled
        garbled_page_ratio: Garbled fraction of the sample that triggers re-download
        reference_scan_pages: Trailing pages scanned for a bibliography header
        last_pages_fallback: Trailing pages sent to the LLM when no header is found
        llm_chunk_size: Entries per LLM chunk
        llm_chunk_threshold_refs: Chunk when more entries than this are detected
        llm_chunk_threshold_chars: Chunk when input is longer than this
        llm_max_retries: Extra attempts for timeout-classified LLM failures
        llm_retry_base_delay: Linear backoff step in seconds
        llm_request_timeout: Seconds before one LLM call counts as timed out
        max_range_span: Numeric citation ranges must span fewer numbers than this
        enable_rate_limiting: Enable API rate limiting
        log_file: Optional log file for the preprocessing audit trail
    """

    # LLM Settings
    gemini_api_key: Optional[str] = None
    gemini_model_parsing: str = "gemini-2.0-flash"

    # Structure engine (GROBID)
    structure_engine_enabled: bool = True
    grobid_url: str = "http://localhost:8070"
    grobid_version: str = "0.8.2"
    grobid_install_dir: str = "~/.bibstruct/grobid"
    grobid_autostart: bool = False
    grobid_startup_timeout: float = 120.0
    grobid_request_timeout: float = 180.0

    # Page text extraction
    pdftotext_enabled: bool = True
    ocr_enabled: bool = False
    ocr_engine: str = "tesseract"
    ocr_language: str = "eng"
    ocr_dpi: int = 300
    ocr_engine_mode: int = 3
    page_workers: int = field(default_factory=_default_workers)
    garbled_sample_size: int = 10
    garbled_page_ratio: float = 0.10

    # Alternate source
    alternate_source_enabled: bool = False
    download_dir: str = "~/.bibstruct/pdfs"
    max_download_bytes: int = 100 * 1024 * 1024

    # Reference parsing
    reference_scan_pages: int = 15
    last_pages_fallback: int = 15
    llm_chunk_size: int = 20
    llm_chunk_threshold_refs: int = 15
    llm_chunk_threshold_chars: int = 15000
    llm_max_retries: int = 2
    llm_retry_base_delay: float = 1.0
    llm_request_timeout: float = 120.0

    # Citation linking
    max_range_span: int = 50

    # Misc
    enable_rate_limiting: bool = True
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            env_file: Path to .env file (optional)

        Returns:
            Config instance with values from environment
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_model_parsing=os.getenv("GEMINI_MODEL_PARSING", "gemini-2.0-flash"),
            structure_engine_enabled=_env_bool("BIBSTRUCT_GROBID_ENABLED", True),
            grobid_url=os.getenv("BIBSTRUCT_GROBID_URL", "http://localhost:8070"),
            grobid_version=os.getenv("BIBSTRUCT_GROBID_VERSION", "0.8.2"),
            grobid_install_dir=os.getenv("BIBSTRUCT_GROBID_HOME", "~/.bibstruct/grobid"),
            grobid_autostart=_env_bool("BIBSTRUCT_GROBID_AUTOSTART", False),
            grobid_startup_timeout=float(os.getenv("BIBSTRUCT_GROBID_STARTUP_TIMEOUT", "120")),
            grobid_request_timeout=float(os.getenv("BIBSTRUCT_GROBID_REQUEST_TIMEOUT", "180")),
            pdftotext_enabled=_env_bool("BIBSTRUCT_PDFTOTEXT_ENABLED", True),
            ocr_enabled=_env_bool("BIBSTRUCT_OCR_ENABLED", False),
            ocr_engine=os.getenv("BIBSTRUCT_OCR_ENGINE", "tesseract"),
            ocr_language=os.getenv("BIBSTRUCT_OCR_LANGUAGE", "eng"),
            ocr_dpi=int(os.getenv("BIBSTRUCT_OCR_DPI", "300")),
            ocr_engine_mode=int(os.getenv("BIBSTRUCT_OCR_ENGINE_MODE", "3")),
            page_workers=int(workers)
            if (workers := os.getenv("BIBSTRUCT_PAGE_WORKERS"))
            else _default_workers(),
            alternate_source_enabled=_env_bool("BIBSTRUCT_ARXIV_FALLBACK", False),
            download_dir=os.getenv("BIBSTRUCT_DOWNLOAD_DIR", "~/.bibstruct/pdfs"),
            llm_chunk_size=int(os.getenv("BIBSTRUCT_LLM_CHUNK_SIZE", "20")),
            llm_max_retries=int(os.getenv("BIBSTRUCT_LLM_MAX_RETRIES", "2")),
            max_range_span=int(os.getenv("BIBSTRUCT_MAX_RANGE_SPAN", "50")),
            enable_rate_limiting=_env_bool("BIBSTRUCT_ENABLE_RATE_LIMITING", True),
            log_file=os.getenv("BIBSTRUCT_LOG_FILE"),
        )

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Load configuration from dictionary.

        Args:
            config_dict: Dictionary with configuration values

        Returns:
            Config instance
        """
        return cls(**{k: v for k, v in config_dict.items() if k in cls.__annotations__})
