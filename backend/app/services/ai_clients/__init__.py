"""
AI Clients package for remote analysis collaborators.

This package provides the interfaces and implementations for:
- AssemblyClient: AssemblyAI transcription with chapters and sentiment
- EmotionClient: HuggingFace text-emotion classifier (optional, fail-open)

Usage:
    from app.services.ai_clients import AssemblyClient, EmotionClient

    async with AssemblyClient.from_settings(settings) as provider:
        job = await provider.analyze(asset)

    async with EmotionClient.from_settings(settings) as classifier:
        label = await classifier.classify(chapter.summary)
"""

from app.services.ai_clients.assembly_client import AssemblyClient
from app.services.ai_clients.base import (
    AIClientConfig,
    AIClientError,
    AnalysisProvider,
    AnalysisTimeoutError,
    EmotionClassifier,
    PollCallback,
    ProviderError,
    UploadError,
)
from app.services.ai_clients.emotion_client import EmotionClient

__all__ = [
    # Protocols and config
    "AnalysisProvider",
    "EmotionClassifier",
    "AIClientConfig",
    "PollCallback",
    # Errors
    "AIClientError",
    "UploadError",
    "ProviderError",
    "AnalysisTimeoutError",
    # Implementations
    "AssemblyClient",
    "EmotionClient",
]
