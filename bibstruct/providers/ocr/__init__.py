"""OCR engines for pages whose text layer is unusable."""
from .base import OCREngine
from .tesseract import TesseractOCR
from .vision import GeminiVisionOCR

__all__ = ["OCREngine", "TesseractOCR", "GeminiVisionOCR"]
