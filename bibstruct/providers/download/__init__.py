"""Alternate-source PDF downloaders."""
from .base import AlternateSourceDownloader
from .arxiv import ArxivDownloader, detect_arxiv_id

__all__ = ["AlternateSourceDownloader", "ArxivDownloader", "detect_arxiv_id"]
