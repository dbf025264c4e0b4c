"""
SSE (Server-Sent Events) helpers for in-process progress streams.

Services yield ``(event, data)`` pairs; these helpers turn them into the dicts
``sse_starlette.EventSourceResponse`` writes on the wire.
"""

import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Tuple

from app.platform.logger import get_logger

logger = get_logger(__name__)


def format_sse_event(event: str, data: Any) -> Dict[str, str]:
    """
    Build one SSE frame.

    Args:
        event: Event name (status, done, fatal)
        data: JSON-serialisable payload

    Returns:
        Dict with ``event`` and ``data`` keys for EventSourceResponse
    """
    return {"event": event, "data": json.dumps(data, default=str)}


def status_event(stage: str, state: str, message: str = "") -> Tuple[str, Dict[str, str]]:
    """Shorthand for a ``status`` event payload."""
    return "status", {"stage": stage, "state": state, "message": message}


async def to_sse_frames(events: AsyncIterator[Tuple[str, Any]]) -> AsyncIterator[Dict[str, str]]:
    """
    Adapt an async iterator of ``(event, data)`` pairs into SSE frames.

    Stops after the first ``done`` or ``fatal`` event.
    """
    async for event, data in events:
        logger.debug(f"SSE event {event}: {data if event == 'status' else '...'}")
        yield format_sse_event(event, data)
        if event in ("done", "fatal"):
            break


def get_current_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()
