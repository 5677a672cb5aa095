"""External collaborators: language model, OCR engines and PDF downloaders."""
from .base import BaseProvider

__all__ = ["BaseProvider"]
