"""Vision OCR using Gemini on rendered page images."""
import base64
import logging
import time

try:
    import google.generativeai as genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False

from .base import OCREngine, render_page_png
from ..llm.gemini import classify_error
from ...exceptions import OCRError, RateLimitError
from ...utils.rate_limiter import rate_limit_api

logger = logging.getLogger(__name__)

OCR_PROMPT = """You are transcribing a page of an academic paper for a library search index.

Return the complete text of the page exactly as printed, in reading order.
For multi-column layouts, transcribe the left column fully before the right column.
Keep reference list entries on separate lines, including their numbers like [1] or 1.
Do not summarise, translate, correct or add anything. Do not wrap the output in markdown.
If the page has no readable text, return an empty response."""


class GeminiVisionOCR(OCREngine):
    """OCR engine that asks Gemini to transcribe a rendered page image."""

    MAX_RETRIES = 3
    RETRY_DELAY = 2.0

    def __init__(self, config, model_name: str = "gemini-2.0-flash", dpi: int = 150, sleep=time.sleep):
        """Initialize the vision OCR engine.

        Args:
            config: Configuration object with gemini_api_key
            model_name: Gemini model with vision support
            dpi: Render DPI (lower than Tesseract; the model does not need 300)
            sleep: Sleep function used for backoff
        """
        super().__init__(config)
        self.model_name = model_name
        self.dpi = dpi
        self._sleep = sleep
        self._model = None

    def is_available(self) -> bool:
        return GEMINI_AVAILABLE and bool(self.config.gemini_api_key)

    def _get_model(self):
        if self._model is None:
            genai.configure(api_key=self.config.gemini_api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    def ocr_page(self, pdf_path: str, page_num: int) -> str:
        if not self.is_available():
            raise OCRError("Gemini vision OCR requires google-generativeai and GEMINI_API_KEY")

        try:
            image_bytes = render_page_png(pdf_path, page_num, self.dpi)
        except Exception as e:
            raise OCRError(f"Failed to render page {page_num}: {e}") from e

        last_error = None
        for attempt in range(self.MAX_RETRIES):
            try:
                text = self._call_vision_api(image_bytes)
                logger.info(f"✓ Vision OCR page {page_num}: {len(text)} chars")
                return text
            except Exception as e:
                last_error = classify_error(e)
                if attempt == self.MAX_RETRIES - 1:
                    break
                if isinstance(last_error, RateLimitError):
                    wait_time = last_error.retry_after
                else:
                    wait_time = self.RETRY_DELAY * (attempt + 1)
                logger.debug(f"Page {page_num}: {last_error}, retrying in {wait_time:.1f}s")
                self._sleep(wait_time)

        raise OCRError(f"Vision OCR failed for page {page_num}: {last_error}")

    def _call_vision_api(self, image_bytes: bytes) -> str:
        if getattr(self.config, "enable_rate_limiting", True):
            rate_limit_api("gemini", 15, 60)

        image_part = {
            "mime_type": "image/png",
            "data": base64.b64encode(image_bytes).decode("utf-8"),
        }
        response = self._get_model().generate_content(
            [OCR_PROMPT, image_part],
            generation_config=genai.types.GenerationConfig(
                temperature=0.1,
                max_output_tokens=8192,
            ),
        )
        return response.text or ""
