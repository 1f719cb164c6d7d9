"""
HuggingFace emotion classifier client.

Classifies chapter summaries into emotions (joy, sadness, anger, ...)
with a hosted text-classification model. Fail-open: every failure
returns None so callers keep the provider sentiment.
"""

import logging

import httpx

from app.config import Settings
from app.services.ai_clients.base import AIClientConfig

logger = logging.getLogger(__name__)


class EmotionClient:
    """
    Async client for the HuggingFace inference API.

    Implements the EmotionClassifier protocol. Without an API token the
    client is disabled and classify() returns None without a request.

    Example:
        async with EmotionClient.from_settings(settings) as client:
            label = await client.classify("What a comeback in the final minute!")
    """

    def __init__(
        self,
        config: AIClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize emotion classifier client.

        Args:
            config: Model endpoint URL, token and timeout
            transport: Optional httpx transport (tests)
        """
        self.config = config

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        self.http_client = httpx.AsyncClient(
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "EmotionClient":
        """Create EmotionClient from application settings."""
        config = AIClientConfig(
            base_url=settings.emotion_model_url,
            api_key=settings.huggingface_api_token,
            timeout=settings.classifier_timeout,
        )
        return cls(config, transport=transport)

    @property
    def enabled(self) -> bool:
        """True if an API token is configured."""
        return bool(self.config.api_key)

    async def __aenter__(self) -> "EmotionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def classify(self, text: str) -> str | None:
        """
        Classify text into its top emotion label.

        Args:
            text: Text to classify (chapter summary)

        Returns:
            Lower-cased label, or None if disabled or on any failure
        """
        if not self.enabled:
            logger.debug("HUGGINGFACE_API_TOKEN not set, skipping emotion classification")
            return None

        if not text or not text.strip():
            return None

        try:
            response = await self.http_client.post(
                self.config.base_url,
                json={"inputs": text},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Emotion classification HTTP error: {e.response.status_code} - "
                f"{e.response.text[:200]}"
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Emotion classification error: {type(e).__name__}: {e}")
            return None

        return top_label(data)


def top_label(data: object) -> str | None:
    """
    Extract the highest-scoring label from an inference payload.

    The API answers [[{"label": "joy", "score": 0.93}, ...]] for a single
    input. Anything else yields None.
    """
    if not isinstance(data, list) or not data:
        return None

    predictions = data[0]
    if not isinstance(predictions, list):
        return None

    scored = [
        p for p in predictions
        if isinstance(p, dict) and p.get("label") and isinstance(p.get("score"), (int, float))
    ]
    if not scored:
        return None

    best = max(scored, key=lambda p: p["score"])
    return str(best["label"]).lower()
