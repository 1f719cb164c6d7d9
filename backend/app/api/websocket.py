"""
WebSocket handler for real-time progress updates.

Streams upload, polling and transcoding progress of one session.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.services.session_manager import SessionManager, get_session_manager

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

HEARTBEAT_SECONDS = 30.0


@router.websocket("/ws/{session_id}")
async def session_progress_websocket(
    websocket: WebSocket,
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    """
    WebSocket endpoint for real-time session progress updates.

    The first message is the current SessionInfo. Every following message
    is a ProgressEvent (state, progress, message, timestamp), or a
    heartbeat when nothing happened for 30 seconds. The connection stays
    open until the client disconnects or the session is removed.

    Example client (Python):
        async with websockets.connect(f"ws://localhost:8801/ws/{session_id}") as ws:
            async for message in ws:
                data = json.loads(message)
                print(f"{data['state']}: {data['progress']}% - {data['message']}")

    Args:
        websocket: WebSocket connection
        session_id: Session identifier to subscribe to
        manager: Session manager
    """
    orchestrator = manager.get_session(session_id)
    if orchestrator is None:
        await websocket.close(code=4004, reason=f"Session not found: {session_id}")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for session {session_id}")

    # Subscribe before the snapshot so no event falls between the two
    queue = manager.subscribe(session_id)

    try:
        await websocket.send_json(orchestrator.info().model_dump(mode="json"))

        while manager.get_session(session_id) is not None:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                await websocket.send_json(message)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session_id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}")
    finally:
        manager.unsubscribe(session_id, queue)
        logger.info(f"WebSocket closed for session {session_id}")
