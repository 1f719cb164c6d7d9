"""
Progress management for pipeline sessions.

Calculates overall progress based on stage weights and forwards
messages to the session's progress callback.
"""

import logging
from typing import Awaitable, Callable

from app.models.schemas import SessionState

logger = logging.getLogger(__name__)

# Type alias for progress callback
# Signature: (state, progress_percent, message) -> None
ProgressCallback = Callable[[SessionState, float, str], Awaitable[None]]


class ProgressManager:
    """
    Manages progress calculation and reporting for pipeline stages.

    Analysis (upload + remote polling) dominates wall time; extraction
    is reported separately per batch.

    Example:
        manager = ProgressManager()
        overall = manager.calculate_overall_progress(SessionState.ANALYZING, 50)
        # Returns 52.5 (5 + 47.5)
    """

    # Progress weights for each stage (must sum to 100)
    STAGE_WEIGHTS = {
        SessionState.UPLOADED: 5,     # 0-5%: upload to provider
        SessionState.ANALYZING: 95,   # 5-100%: remote job polling + merge
        SessionState.EXTRACTING: 100,  # independent 0-100% per batch
    }

    STAGE_ORDER = [
        SessionState.UPLOADED,
        SessionState.ANALYZING,
    ]

    def calculate_overall_progress(
        self,
        current_stage: SessionState,
        stage_progress: float = 100,
    ) -> float:
        """
        Calculate overall progress percentage.

        Args:
            current_stage: Current session state
            stage_progress: Progress within current stage (0-100)

        Returns:
            Overall progress (0-100)
        """
        base_progress = 0.0
        if current_stage in self.STAGE_ORDER:
            for stage in self.STAGE_ORDER:
                if stage == current_stage:
                    break
                base_progress += self.STAGE_WEIGHTS.get(stage, 0)

        current_weight = self.STAGE_WEIGHTS.get(current_stage, 0)
        stage_contribution = (stage_progress / 100) * current_weight

        return min(base_progress + stage_contribution, 100)

    async def update_progress(
        self,
        callback: ProgressCallback | None,
        state: SessionState,
        stage_progress: float,
        message: str,
    ) -> None:
        """
        Update progress via callback.

        Args:
            callback: Progress callback (may be None)
            state: Current session state
            stage_progress: Progress within current stage (0-100)
            message: Human-readable status message
        """
        if callback is None:
            return

        overall_progress = self.calculate_overall_progress(state, stage_progress)

        try:
            await callback(state, overall_progress, message)
        except Exception as e:
            # Never fail due to callback error
            logger.warning(f"Progress callback error: {e}")
