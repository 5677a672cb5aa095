"""Custom exceptions for bibstruct."""


class BibstructError(Exception):
    """Base exception for all bibstruct errors."""

    pass


class ConfigurationError(BibstructError):
    """Raised when a required tool or engine is missing or disabled."""

    pass


class ValidationError(BibstructError):
    """Raised when input validation fails."""

    pass


class ExtractionFailure(BibstructError):
    """Raised when no usable text could be obtained for a page or document."""

    pass


class StructureEngineFailure(BibstructError):
    """Raised when the structure engine is unreachable, times out or returns garbage."""

    pass


class DownloadError(BibstructError):
    """Raised when an alternate-source PDF download fails."""

    pass


class OCRError(BibstructError):
    """Raised when OCR is unavailable or fails for a page."""

    pass


class LLMError(BibstructError):
    """Raised when a language-model call fails."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when a language-model call times out (retryable)."""

    pass


class RateLimitError(LLMError):
    """Raised when API rate limit is hit."""

    def __init__(self, message: str, retry_after: float = 0):
        super().__init__(message)
        self.retry_after = retry_after


class LLMParseFailure(LLMError):
    """Raised when a model response cannot be repaired into JSON."""

    pass


# Aliases for backward compatibility
ConfigError = ConfigurationError
