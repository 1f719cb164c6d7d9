"""
Base protocols and errors for remote AI collaborators.

Defines the interfaces the pipeline depends on, allowing the AssemblyAI
provider and the HuggingFace emotion classifier to be swapped for fakes
in tests or for other providers later.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, runtime_checkable

from app.models.schemas import AnalysisJob, MediaAsset

# Signature: (attempt, max_attempts) -> None
PollCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class AIClientConfig:
    """
    Configuration for remote client instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional API key for authenticated services
        max_retries: Number of retry attempts for transient errors
    """

    base_url: str
    timeout: float = 60.0
    api_key: str | None = None
    max_retries: int = 3


@runtime_checkable
class AnalysisProvider(Protocol):
    """
    Protocol for the remote transcription and sentiment provider.

    Example:
        async def run(provider: AnalysisProvider, asset: MediaAsset) -> AnalysisJob:
            job_id = await provider.submit(asset)
            return await provider.await_completion(job_id)
    """

    async def submit(self, asset: MediaAsset) -> str:
        """
        Upload media and request chapterization with sentiment.

        Returns:
            Provider job id

        Raises:
            UploadError: Asset rejected or upload failed
            ProviderError: Job could not be created
        """
        ...

    async def await_completion(
        self,
        job_id: str,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        on_poll: PollCallback | None = None,
    ) -> AnalysisJob:
        """
        Poll the job until it reaches a terminal status.

        Raises:
            ProviderError: Job failed on the provider side
            AnalysisTimeoutError: Attempts exhausted without completion
        """
        ...


@runtime_checkable
class EmotionClassifier(Protocol):
    """Protocol for the secondary text-emotion classifier (fail-open)."""

    async def classify(self, text: str) -> str | None:
        """Return an emotion label for text, or None if unavailable."""
        ...


class AIClientError(Exception):
    """
    Base exception for remote collaborator errors.

    Attributes:
        message: Error description
        provider: Provider name (assemblyai, huggingface, etc.)
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        return " | ".join(parts)


class UploadError(AIClientError):
    """
    Raised when media is rejected or cannot be uploaded.

    Attributes:
        status_code: HTTP status suggested for the upload boundary
            (413 oversized, 400 empty or invalid, 415 unsupported type,
            502 upstream upload failure)
    """

    def __init__(self, message: str, status_code: int = 400, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ProviderError(AIClientError):
    """
    Raised when the remote job failed or the provider rejected a request.

    Attributes:
        job_id: Job identifier if one was assigned
        status_code: HTTP status code if available
    """

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        status_code: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.status_code = status_code


class AnalysisTimeoutError(AIClientError, TimeoutError):
    """
    Raised when polling exhausts its attempts without a terminal status.

    Attributes:
        job_id: Job that did not complete
        attempts: Number of polls performed
    """

    def __init__(self, message: str, job_id: str, attempts: int, **kwargs):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.attempts = attempts
