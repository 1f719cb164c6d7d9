"""API routes for the highlight pipeline."""

from app.api import routes, websocket

__all__ = ["routes", "websocket"]
