"""
MODULE OVERVIEW:
What a viewer receives the moment it connects.

WHAT IS HAPPENING HERE:
    Initializing: register -> `connected` -> `comment-history` (if any)
    Active:       only what the broadcast engine fans out (`comment`, `ping`)
    Terminated:   disconnect, idle timeout or a failed write

The two init envelopes go straight to the new handle, never through a
broadcast, so nobody else sees them. If either one fails the handle is ended
through its error path instead of lingering half-initialized in the registry.
"""
from typing import Protocol

from loguru import logger

from comment_stream.server.connection import ConnectionHandle, Transport
from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.shared.errors import SubscriptionInitError
from comment_stream.shared.events import EVENT_COMMENT_HISTORY, EVENT_CONNECTED, Envelope
from comment_stream.shared.models import Comment

CONNECTED_MESSAGE = "Connected to the comment stream"


class CommentHistory(Protocol):
    def recent_comments(self, limit: int) -> list[Comment]: ...


def open_subscription(
    registry: ConnectionRegistry,
    history: CommentHistory,
    history_limit: int = 10,
    transport: Transport | None = None,
) -> ConnectionHandle:
    handle = registry.register(transport)
    try:
        handle.send(Envelope(event_name=EVENT_CONNECTED, payload=CONNECTED_MESSAGE))
        recent = history.recent_comments(history_limit)
        if recent:
            handle.send(Envelope(event_name=EVENT_COMMENT_HISTORY, payload=recent))
            logger.debug(f"connection_id={handle.connection_id} event=history sent={len(recent)} limit={history_limit}")
        else:
            logger.debug(f"connection_id={handle.connection_id} event=history sent=0")
    except Exception as e:
        handle.fail(e)
        raise SubscriptionInitError(handle.connection_id, f"failed to initialize subscription: {e}") from e
    return handle
