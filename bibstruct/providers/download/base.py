"""Base downloader interface."""
from abc import abstractmethod

from ..base import BaseProvider


class AlternateSourceDownloader(BaseProvider):
    """Fetches another copy of a paper from a public mirror."""

    @abstractmethod
    def download_from_known_id(self, known_id: str) -> str:
        """Download the paper identified by ``known_id``.

        Args:
            known_id: Public identifier understood by the mirror

        Returns:
            Local path of the downloaded PDF

        Raises:
            DownloadError: If the download fails or is not a usable PDF
        """
        pass
