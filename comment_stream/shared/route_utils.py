from fastapi import Request
from loguru import logger

from comment_stream.server.broadcast import BroadcastEngine
from comment_stream.server.comment_store import CommentStore
from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.shared.config import Settings
from comment_stream.shared.errors import UnsupportedMediaTypeError


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_engine(request: Request) -> BroadcastEngine:
    return request.app.state.engine


def get_store(request: Request) -> CommentStore:
    return request.app.state.store


def require_json(request: Request) -> None:
    """Reject bodies that are not declared as JSON with 415."""
    content_type = request.headers.get("content-type")
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type != "application/json":
        raise UnsupportedMediaTypeError(content_type)


def log_connection(protocol: str, connection_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a stream connecting or disconnecting.
    Writes: protocol, connection_id and any extra fields.
    """
    log_str = f"protocol={protocol} connection_id={connection_id}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)
