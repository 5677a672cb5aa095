"""Base provider interface."""
from typing import Any, Optional


class BaseProvider:
    """Base class for all providers."""

    def __init__(self, config: Optional[Any] = None):
        """Initialize provider with optional configuration.

        Args:
            config: Configuration object
        """
        self.config = config
