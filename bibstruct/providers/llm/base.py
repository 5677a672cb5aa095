"""Base LLM provider interface."""
from abc import abstractmethod

from ..base import BaseProvider


class BaseLLMProvider(BaseProvider):
    """Abstract base class for language-model providers.

    The pipeline only needs a single free-text completion call.
    """

    @abstractmethod
    def chat(self, prompt: str) -> str:
        """Send one prompt and return the model's text reply.

        Args:
            prompt: Full prompt text

        Returns:
            Generated text

        Raises:
            LLMTimeoutError: If the call timed out (retryable)
            RateLimitError: If the provider rejected the call for quota reasons
            LLMError: For any other failure
        """
        pass
