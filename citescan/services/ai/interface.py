"""
Analysis Service Interface

Abstract base class defining the contract the analysis collaborator
must implement.
"""

from abc import ABC, abstractmethod
from typing import Any


class AnalysisService(ABC):
    """Abstract interface for AI analysis providers.

    Implementations raise RateLimitedError, CollaboratorTimeoutError or
    MalformedResponseError; all of them are retryable for the caller.
    """

    @abstractmethod
    async def analyze(self, prompt: str, content: str) -> dict[str, Any]:
        """Return a structured JSON judgment about content.

        Args:
            prompt: Instruction with the expected JSON schema
            content: Page text or other material to judge

        Returns:
            Parsed JSON object from the model
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name for logging."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name being used."""
        pass
