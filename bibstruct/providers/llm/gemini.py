"""Google Gemini LLM provider implementation."""
import logging
import re
from typing import Optional

try:
    import google.generativeai as genai
    from google.generativeai import types
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False

from .base import BaseLLMProvider
from ...exceptions import LLMError, LLMTimeoutError, RateLimitError
from ...utils.rate_limiter import rate_limit_api

logger = logging.getLogger(__name__)

TIMEOUT_MARKERS = ("timeout", "timed out", "deadline", "504")
RATE_LIMIT_MARKERS = ("429", "quota", "resource exhausted", "resource_exhausted")


def classify_error(error: Exception) -> LLMError:
    """Map a raw client exception onto the LLM error hierarchy."""
    if isinstance(error, LLMError):
        return error
    message = str(error)
    lowered = message.lower()
    if isinstance(error, TimeoutError) or any(m in lowered for m in TIMEOUT_MARKERS):
        return LLMTimeoutError(f"Gemini request timed out: {message}")
    if any(m in lowered for m in RATE_LIMIT_MARKERS):
        return RateLimitError(
            f"Gemini rate limit: {message}",
            retry_after=_extract_retry_delay(message),
        )
    return LLMError(f"Gemini generation failed: {message}")


def _extract_retry_delay(error_msg: str) -> float:
    match = re.search(r'retry in (\d+(?:\.\d+)?)', error_msg.lower())
    if match:
        return float(match.group(1)) + 5  # Add buffer
    return 60.0


class GeminiProvider(BaseLLMProvider):
    """Google Gemini LLM provider.

    Uses the google-generativeai library. Calls are rate limited to 15 per
    minute and raw client errors are classified into timeout, rate-limit
    and generic failures.
    """

    def __init__(self, config, model: Optional[str] = None, temperature: float = 0.1):
        """Initialize Gemini provider.

        Args:
            config: Configuration object with gemini_api_key
            model: Model name (defaults to config.gemini_model_parsing)
            temperature: Generation temperature

        Raises:
            LLMError: If Gemini library not installed or API key missing
        """
        super().__init__(config)

        if not GEMINI_AVAILABLE:
            raise LLMError(
                "google-generativeai library not installed. "
                "Install it with: pip install google-generativeai"
            )

        if not self.config.gemini_api_key:
            raise LLMError("GEMINI_API_KEY not configured")

        self.model = model or self.config.gemini_model_parsing
        self.temperature = temperature

        try:
            genai.configure(api_key=self.config.gemini_api_key)
            self.client = genai
            logger.info("Google Generative AI client configured successfully")
        except Exception as e:
            raise LLMError(f"Failed to configure Gemini client: {e}")

    def chat(self, prompt: str) -> str:
        """Generate a reply for a single prompt.

        Args:
            prompt: Text prompt

        Returns:
            Generated text

        Raises:
            LLMTimeoutError, RateLimitError, LLMError
        """
        logger.debug(f"Generating with Gemini model: {self.model}")

        if getattr(self.config, "enable_rate_limiting", True):
            rate_limit_api("gemini", 15, 60)

        generation_config = types.GenerationConfig(temperature=self.temperature)

        try:
            gen_model = self.client.GenerativeModel(self.model)
            response = gen_model.generate_content(
                contents=[prompt],
                generation_config=generation_config,
                request_options={"timeout": self.config.llm_request_timeout},
            )
            return response.text or ""
        except Exception as e:
            error = classify_error(e)
            logger.error(f"Gemini generation error: {e}")
            raise error from e
