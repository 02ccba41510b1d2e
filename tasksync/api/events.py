"""
Server-Sent Events stream for live sync notifications.

    GET /events?projects=1,2

Each frame is one broadcaster event:

    event: merge-completed
    data: {"type": "merge-completed", "projectId": "1", "data": {...}, "timestamp": "..."}

Heartbeat pings arrive every HEARTBEAT_INTERVAL seconds; a client that stops
reading is evicted after SUBSCRIBER_TIMEOUT.
"""

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from ..core.logging import get_logger
from ..services import EventBroadcaster
from ..services.broadcaster import Subscriber
from .dependencies import get_broadcaster, get_user_id

logger = get_logger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

# How often the stream checks for a closed connection
POLL_INTERVAL = 1.0


async def event_stream(
    request: Request, broadcaster: EventBroadcaster, subscriber: Subscriber
) -> AsyncIterator[str]:
    """Yield SSE frames until the client disconnects or is evicted."""
    try:
        while broadcaster.get_subscriber(subscriber.id) is not None:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(subscriber.queue.get(), timeout=POLL_INTERVAL)
            except TimeoutError:
                continue
            broadcaster.touch(subscriber.id)
            yield event.to_sse()
    finally:
        broadcaster.unsubscribe(subscriber.id)


@router.get(
    "",
    summary="Subscribe to sync events",
    description="Server-Sent Events for the listed projects (comma-separated ids).",
    response_class=StreamingResponse,
)
async def subscribe_events(
    request: Request,
    projects: str = Query("", description="Comma-separated project ids"),
    user_id: str = Depends(get_user_id),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    project_ids = [p.strip() for p in projects.split(",") if p.strip()]
    subscriber = broadcaster.subscribe(user_id, project_ids)
    return StreamingResponse(
        event_stream(request, broadcaster, subscriber),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Subscriber-Id": subscriber.id},
    )
