"""
AssemblyAI speech-analysis client implementation.

Uploads media, requests a transcript with auto chapters and sentiment
analysis, and polls the job until it completes, fails or times out.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings
from app.models.schemas import (
    AnalysisJob,
    JobStatus,
    MediaAsset,
    RawChapter,
    SentimentSegment,
)
from app.services.ai_clients.base import (
    AIClientConfig,
    AnalysisTimeoutError,
    PollCallback,
    ProviderError,
    UploadError,
)

logger = logging.getLogger(__name__)

PROVIDER = "assemblyai"

SleepFunc = Callable[[float], Awaitable[None]]

# Provider status -> job status
STATUS_MAP = {
    "queued": JobStatus.SUBMITTED,
    "processing": JobStatus.PROCESSING,
    "completed": JobStatus.COMPLETED,
    "error": JobStatus.FAILED,
}

# Retry a single status request on transient network errors.
# Uploads are never retried.
POLL_RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ReadTimeout)),
    reraise=True,
)


class AssemblyClient:
    """
    Async HTTP client for the AssemblyAI transcription API.

    Implements the AnalysisProvider protocol.

    Example:
        async with AssemblyClient.from_settings(settings) as client:
            job_id = await client.submit(asset)
            job = await client.await_completion(job_id)
    """

    def __init__(
        self,
        config: AIClientConfig,
        max_upload_bytes: int,
        poll_interval: float = 2.0,
        max_attempts: int = 60,
        upload_timeout: float = 600.0,
        sleep: SleepFunc = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize AssemblyAI client.

        Args:
            config: Base URL, API key and request timeout
            max_upload_bytes: Upload size ceiling, checked before any request
            poll_interval: Default seconds between status polls
            max_attempts: Default number of polls before timing out
            upload_timeout: Timeout for the media upload request
            sleep: Coroutine function used between polls
            transport: Optional httpx transport (tests)
        """
        self.config = config
        self.max_upload_bytes = max_upload_bytes
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.upload_timeout = upload_timeout
        self._sleep = sleep

        headers = {}
        if config.api_key:
            headers["authorization"] = config.api_key
        else:
            logger.warning("ASSEMBLY_API_KEY not set, provider requests will be rejected")

        self.http_client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sleep: SleepFunc = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AssemblyClient":
        """
        Create AssemblyClient from application settings.

        Args:
            settings: Application settings
            sleep: Coroutine function used between polls
            transport: Optional httpx transport (tests)

        Returns:
            Configured AssemblyClient instance
        """
        config = AIClientConfig(
            base_url=settings.assembly_api_url,
            api_key=settings.assembly_api_key,
            timeout=settings.http_timeout,
        )
        return cls(
            config=config,
            max_upload_bytes=settings.max_upload_bytes,
            poll_interval=settings.poll_interval,
            max_attempts=settings.poll_max_attempts,
            upload_timeout=settings.upload_timeout,
            sleep=sleep,
            transport=transport,
        )

    async def __aenter__(self) -> "AssemblyClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def check_health(self) -> bool:
        """
        Check that the provider answers authenticated requests.

        Returns:
            True if the API is reachable, False otherwise
        """
        try:
            response = await self.http_client.get("/transcript", params={"limit": 1}, timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"AssemblyAI not available: {e}")
        return False

    # ═══════════════════════════════════════════════════════════════════════
    # Submission
    # ═══════════════════════════════════════════════════════════════════════

    def validate_asset(self, asset: MediaAsset) -> None:
        """
        Reject assets that must never reach the provider.

        Raises:
            UploadError: Empty or oversized asset
        """
        if asset.size_bytes == 0:
            raise UploadError("The uploaded file is empty.", status_code=400, provider=PROVIDER)

        if asset.size_bytes > self.max_upload_bytes:
            size_mb = asset.size_bytes / 1024 / 1024
            limit_mb = self.max_upload_bytes / 1024 / 1024
            raise UploadError(
                f"File too large: {size_mb:.1f} MB exceeds the {limit_mb:.0f} MB limit",
                status_code=413,
                provider=PROVIDER,
            )

    async def submit(self, asset: MediaAsset) -> str:
        """
        Upload media and create a chapterization + sentiment job.

        Args:
            asset: Uploaded media

        Returns:
            Provider job id

        Raises:
            UploadError: Asset rejected or upload failed (no retry)
            ProviderError: Job creation failed
        """
        self.validate_asset(asset)

        upload_url = await self.upload(asset)
        job_id = await self.create_job(upload_url)

        logger.info(f"Submitted {asset.filename} as job {job_id}")
        return job_id

    async def upload(self, asset: MediaAsset) -> str:
        """
        Upload raw bytes to provider storage.

        Returns:
            Provider upload URL

        Raises:
            UploadError: Network or HTTP failure
        """
        size_mb = asset.size_bytes / 1024 / 1024
        logger.info(f"Uploading: {asset.filename} ({size_mb:.1f} MB)")
        start_time = time.time()

        try:
            response = await self.http_client.post(
                "/upload",
                content=asset.data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.upload_timeout,
            )
            response.raise_for_status()
            upload_url = response.json()["upload_url"]

        except httpx.HTTPStatusError as e:
            logger.error(
                f"Upload HTTP error: {e.response.status_code} - {e.response.text[:200]}"
            )
            raise UploadError(
                f"Upload failed: HTTP {e.response.status_code}",
                status_code=502,
                provider=PROVIDER,
                original_error=e,
            ) from e

        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Upload failed: {type(e).__name__}: {e}")
            raise UploadError(
                f"Upload failed: {e}",
                status_code=502,
                provider=PROVIDER,
                original_error=e,
            ) from e

        logger.debug(f"Upload complete in {time.time() - start_time:.1f}s")
        return upload_url

    async def create_job(self, upload_url: str) -> str:
        """
        Request a transcript with auto chapters and sentiment analysis.

        Returns:
            Provider job id

        Raises:
            ProviderError: Job request rejected or unreachable provider
        """
        payload = {
            "audio_url": upload_url,
            "auto_chapters": True,
            "sentiment_analysis": True,
        }

        try:
            response = await self.http_client.post("/transcript", json=payload)
            response.raise_for_status()
            return str(response.json()["id"])

        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Job creation failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                provider=PROVIDER,
                original_error=e,
            ) from e

        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ProviderError(
                f"Job creation failed: {e}",
                provider=PROVIDER,
                original_error=e,
            ) from e

    # ═══════════════════════════════════════════════════════════════════════
    # Polling
    # ═══════════════════════════════════════════════════════════════════════

    @POLL_RETRY_DECORATOR
    async def _fetch_job(self, job_id: str) -> dict:
        response = await self.http_client.get(f"/transcript/{job_id}")
        response.raise_for_status()
        return response.json()

    async def get_job(self, job_id: str) -> AnalysisJob:
        """
        Fetch current job state.

        Args:
            job_id: Provider job id

        Returns:
            AnalysisJob parsed from the provider payload

        Raises:
            ProviderError: HTTP error or unreachable provider
        """
        try:
            data = await self._fetch_job(job_id)
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Job status request failed: HTTP {e.response.status_code}",
                job_id=job_id,
                status_code=e.response.status_code,
                provider=PROVIDER,
                original_error=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(
                f"Job status request failed: {e}",
                job_id=job_id,
                provider=PROVIDER,
                original_error=e,
            ) from e

        try:
            return parse_job(job_id, data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(
                f"Malformed job payload: {e}",
                job_id=job_id,
                provider=PROVIDER,
                original_error=e,
            ) from e

    async def await_completion(
        self,
        job_id: str,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        on_poll: PollCallback | None = None,
    ) -> AnalysisJob:
        """
        Poll the job at a fixed interval until it is terminal.

        Args:
            job_id: Provider job id
            poll_interval: Seconds between polls (default: client setting)
            max_attempts: Number of polls (default: client setting)
            on_poll: Optional async hook called before each poll

        Returns:
            Completed AnalysisJob

        Raises:
            ProviderError: Job failed
            AnalysisTimeoutError: Attempts exhausted
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        attempts = self.max_attempts if max_attempts is None else max_attempts

        for attempt in range(1, attempts + 1):
            if on_poll is not None:
                await on_poll(attempt, attempts)

            job = await self.get_job(job_id)
            logger.debug(f"Job {job_id} poll {attempt}/{attempts}: {job.status.value}")

            if job.status == JobStatus.COMPLETED:
                logger.info(
                    f"Job {job_id} completed: {len(job.chapters)} chapters, "
                    f"{len(job.sentiments)} sentiment segments"
                )
                return job

            if job.status == JobStatus.FAILED:
                message = job.error or "Transcription failed"
                logger.error(f"Job {job_id} failed: {message}")
                raise ProviderError(message, job_id=job_id, provider=PROVIDER)

            if attempt < attempts:
                await self._sleep(interval)

        logger.error(f"Job {job_id} timed out after {attempts} polls")
        raise AnalysisTimeoutError(
            "Transcription timed out.",
            job_id=job_id,
            attempts=attempts,
            provider=PROVIDER,
        )

    async def analyze(self, asset: MediaAsset, on_poll: PollCallback | None = None) -> AnalysisJob:
        """Submit media and wait for the completed job."""
        job_id = await self.submit(asset)
        return await self.await_completion(job_id, on_poll=on_poll)


def parse_job(job_id: str, data: dict) -> AnalysisJob:
    """
    Build an AnalysisJob from a provider transcript payload.

    Missing or null collections become empty lists.

    Args:
        job_id: Provider job id
        data: Raw JSON payload

    Returns:
        AnalysisJob
    """
    status = STATUS_MAP.get(str(data.get("status", "")).lower(), JobStatus.PROCESSING)

    chapters = [
        RawChapter(
            start_ms=int(item["start"]),
            end_ms=int(item["end"]),
            summary=item.get("summary") or "",
            headline=item.get("headline") or "",
        )
        for item in data.get("chapters") or []
    ]

    sentiments = [
        SentimentSegment(
            start_ms=int(item["start"]),
            end_ms=int(item["end"]),
            label=str(item.get("sentiment", "")).lower(),
            confidence=float(item.get("confidence") or 0.0),
            text=item.get("text") or "",
        )
        for item in data.get("sentiment_analysis_results") or []
    ]

    return AnalysisJob(
        id=str(data.get("id") or job_id),
        status=status,
        transcript_text=data.get("text") or "",
        chapters=chapters,
        sentiments=sentiments,
        error=data.get("error"),
    )
