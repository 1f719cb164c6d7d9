"""
Session manager for pipeline sessions.

Handles session lifecycle, owns the process-wide transcode queue and
broadcasts progress updates to WebSocket subscribers.
"""

import asyncio
import logging
import uuid

from app.config import Settings, get_settings
from app.models.schemas import ProgressEvent, SessionState
from app.services.ffmpeg_engine import FFmpegEngine
from app.services.pipeline import PipelineOrchestrator, TranscodeQueue

logger = logging.getLogger(__name__)

BUSY_STATES = (SessionState.ANALYZING, SessionState.EXTRACTING)


class SessionManager:
    """
    Manager for pipeline sessions with WebSocket broadcasting.

    Stores sessions in-memory for the lifetime of the process. Every
    session shares one TranscodeQueue, so the ffmpeg engine never runs
    two jobs at once across sessions.

    Example:
        manager = SessionManager(settings)
        orchestrator = manager.create_session()

        # Subscribe to updates
        queue = manager.subscribe(orchestrator.session_id)

        await orchestrator.upload("talk.mp4", data)
        await orchestrator.analyze()  # progress is broadcast to queue
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transcode_queue: TranscodeQueue | None = None,
    ):
        """
        Initialize session manager with empty stores.

        Args:
            settings: Application settings
            transcode_queue: Shared queue (created with an FFmpegEngine if None)
        """
        self.settings = settings or get_settings()
        self.engine: FFmpegEngine | None = None
        if transcode_queue is None:
            self.engine = FFmpegEngine(self.settings)
            transcode_queue = TranscodeQueue(self.engine, self.settings)
        self.transcode_queue = transcode_queue
        self._sessions: dict[str, PipelineOrchestrator] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def create_session(self, **orchestrator_kwargs) -> PipelineOrchestrator:
        """
        Create a new idle session.

        Args:
            orchestrator_kwargs: Extra PipelineOrchestrator arguments
                (provider, classifier) used by tests and scripts

        Returns:
            Orchestrator for the session
        """
        self._evict_idle()
        session_id = str(uuid.uuid4())[:8]

        async def progress_callback(state: SessionState, progress: float, message: str) -> None:
            await self.publish(session_id, state, progress, message)

        orchestrator = PipelineOrchestrator(
            self.settings,
            queue=self.transcode_queue,
            progress_callback=progress_callback,
            session_id=session_id,
            **orchestrator_kwargs,
        )

        self._sessions[session_id] = orchestrator
        self._subscribers[session_id] = []

        logger.info(f"Created session {session_id}")
        return orchestrator

    def get_session(self, session_id: str) -> PipelineOrchestrator | None:
        """
        Get session by ID.

        Returns:
            Orchestrator or None if not found
        """
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[PipelineOrchestrator]:
        """List all sessions."""
        return list(self._sessions.values())

    def remove_session(self, session_id: str) -> bool:
        """
        Forget a session and drop its subscribers.

        Returns:
            True if the session existed
        """
        self._subscribers.pop(session_id, None)
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info(f"Removed session {session_id}")
        return removed

    async def publish(
        self,
        session_id: str,
        state: SessionState,
        progress: float,
        message: str,
    ) -> None:
        """
        Broadcast a progress event to subscribers.

        Args:
            session_id: Session identifier
            state: Stage reporting progress
            progress: Progress percentage (0-100)
            message: Human-readable status message
        """
        event = ProgressEvent(state=state, progress=round(progress, 1), message=message)
        await self._broadcast(session_id, event.model_dump(mode="json"))

    def subscribe(self, session_id: str) -> asyncio.Queue:
        """
        Subscribe to session progress updates.

        Returns:
            Queue that will receive progress messages (never fed for
            an unknown session)
        """
        queue: asyncio.Queue = asyncio.Queue()

        subscribers = self._subscribers.get(session_id)
        if subscribers is None:
            logger.warning(f"Subscribe to unknown session {session_id}")
            return queue

        subscribers.append(queue)
        logger.debug(f"Client subscribed to session {session_id}")

        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        """Unsubscribe from session progress updates."""
        if session_id in self._subscribers:
            try:
                self._subscribers[session_id].remove(queue)
                logger.debug(f"Client unsubscribed from session {session_id}")
            except ValueError:
                pass

    def close(self) -> None:
        """Release engine working storage."""
        if self.engine is not None:
            self.engine.close()

    def _evict_idle(self) -> None:
        """Drop the oldest sessions not in use once the store is full."""
        while len(self._sessions) >= self.settings.max_sessions:
            victim = next(
                (
                    session_id
                    for session_id, orchestrator in self._sessions.items()
                    if orchestrator.state not in BUSY_STATES
                    and not self._subscribers.get(session_id)
                ),
                None,
            )
            if victim is None:
                logger.warning(f"Session store full ({len(self._sessions)}), nothing to evict")
                return
            logger.info(f"Evicting session {victim}")
            self.remove_session(victim)

    async def _broadcast(self, session_id: str, message: dict) -> None:
        for queue in self._subscribers.get(session_id, []):
            await queue.put(message)


_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get global session manager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
