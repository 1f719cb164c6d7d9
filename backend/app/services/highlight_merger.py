"""
Chapter and sentiment merger.

Assigns a dominant emotion to every provider chapter:
1. Provider sentiment: the most confident segment fully inside the chapter
2. Classifier refinement: summary-based label overrides when available
"""

import asyncio
import logging
from typing import Awaitable, Callable

from app.config import Settings, get_settings
from app.models.schemas import EnrichedChapter, RawChapter, SentimentSegment

logger = logging.getLogger(__name__)

# Signature: (text) -> label or None
ClassifyFunc = Callable[[str], Awaitable[str | None]]


def is_contained(segment: SentimentSegment, chapter: RawChapter) -> bool:
    """True if the segment lies entirely within the chapter window."""
    return segment.start_ms >= chapter.start_ms and segment.end_ms <= chapter.end_ms


def dominant_sentiment(
    chapter: RawChapter,
    sentiments: list[SentimentSegment],
) -> SentimentSegment | None:
    """
    Pick the dominant sentiment segment for a chapter.

    Segments straddling a chapter boundary are ignored for both
    neighbours. Highest confidence wins, ties go to the earliest start.

    Args:
        chapter: Chapter window
        sentiments: All sentiment segments of the transcript

    Returns:
        Winning segment or None if no segment is contained
    """
    best: SentimentSegment | None = None

    for segment in sentiments:
        if not is_contained(segment, chapter):
            continue
        if best is None:
            best = segment
        elif segment.confidence > best.confidence:
            best = segment
        elif segment.confidence == best.confidence and segment.start_ms < best.start_ms:
            best = segment

    return best


class HighlightMerger:
    """
    Merges chapter boundaries with sentiment into EnrichedChapter records.

    Chapters are enriched concurrently (classifier calls are limited by
    a semaphore) and returned in their original order.

    Example:
        merger = HighlightMerger(settings)
        chapters = await merger.merge(job.chapters, job.sentiments, classifier.classify)
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize merger.

        Args:
            settings: Application settings (max parallel classifier calls)
        """
        self.settings = settings or get_settings()
        self.max_parallel = max(1, self.settings.classifier_max_parallel)

    async def merge(
        self,
        chapters: list[RawChapter],
        sentiments: list[SentimentSegment],
        classify: ClassifyFunc | None = None,
    ) -> list[EnrichedChapter]:
        """
        Enrich chapters with their dominant emotion.

        Args:
            chapters: Provider chapters in provider order
            sentiments: Provider sentiment segments
            classify: Optional async classifier for chapter summaries

        Returns:
            One EnrichedChapter per chapter, same order, 1-based ids
        """
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def enrich_with_semaphore(index: int, chapter: RawChapter) -> EnrichedChapter:
            async with semaphore:
                return await self._enrich(index, chapter, sentiments, classify)

        tasks = [
            enrich_with_semaphore(idx + 1, chapter)
            for idx, chapter in enumerate(chapters)
        ]
        enriched = await asyncio.gather(*tasks)

        labelled = sum(1 for c in enriched if c.dominant_emotion)
        logger.info(f"Merged {len(enriched)} chapters ({labelled} with emotion)")

        return list(enriched)

    async def _enrich(
        self,
        chapter_id: int,
        chapter: RawChapter,
        sentiments: list[SentimentSegment],
        classify: ClassifyFunc | None,
    ) -> EnrichedChapter:
        segment = dominant_sentiment(chapter, sentiments)
        emotion = segment.label if segment else None

        if classify is not None:
            refined = await self._classify_safe(chapter_id, chapter.summary, classify)
            if refined:
                logger.debug(
                    f"Chapter {chapter_id}: classifier '{refined}' overrides '{emotion}'"
                )
                emotion = refined

        return EnrichedChapter(
            chapter_id=chapter_id,
            start_ms=chapter.start_ms,
            end_ms=chapter.end_ms,
            summary=chapter.summary,
            dominant_emotion=emotion,
        )

    async def _classify_safe(
        self,
        chapter_id: int,
        text: str,
        classify: ClassifyFunc,
    ) -> str | None:
        try:
            return await classify(text)
        except Exception as e:
            # Classifier is fail-open
            logger.warning(f"Chapter {chapter_id}: classifier failed: {type(e).__name__}: {e}")
            return None
