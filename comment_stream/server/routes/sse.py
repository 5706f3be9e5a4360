"""
MODULE OVERVIEW:
The comment stream endpoint.

WHAT IS HAPPENING HERE:
Each GET opens one subscription: a fresh handle is registered, primed with the
`connected` and `comment-history` envelopes, and its frames become the body of
an `EventSourceResponse`. The frames are already encoded, so sse-starlette
passes the bytes through untouched.
"""
from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.server.comment_store import CommentStore
from comment_stream.server.subscription import open_subscription
from comment_stream.shared.config import Settings
from comment_stream.shared.events import FRAME_SEPARATOR
from comment_stream.shared.route_utils import get_registry, get_settings, get_store, log_connection

router = APIRouter()

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@router.get("/api/sse/comments")
async def comments_stream(
    request: Request,
    registry: ConnectionRegistry = Depends(get_registry),
    store: CommentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    handle = open_subscription(registry, store, settings.HISTORY_LIMIT)
    log_connection("sse:connect", handle.connection_id, {"active": registry.size()})

    if request.app.state.close_streams_after_init:
        handle.close()

    async def event_publisher():
        try:
            async for frame in handle.stream():
                yield frame
        finally:
            reason = handle.terminal_reason.value if handle.terminal_reason else "unknown"
            log_connection("sse:disconnect", handle.connection_id, {"reason": reason})

    return EventSourceResponse(event_publisher(), headers=STREAM_HEADERS, sep=FRAME_SEPARATOR)
