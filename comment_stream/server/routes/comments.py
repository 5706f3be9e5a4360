"""
MODULE OVERVIEW:
Posting and reading comments.

WHAT IS HAPPENING HERE:
`POST /api/comments` is a plain `def` endpoint, so FastAPI runs it on its
worker threadpool. Several posts can therefore broadcast at the same time from
different threads, alongside the keep-alive thread. The broadcast never fails
the request: a broken viewer connection is the broadcast engine's problem.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.exceptions import RequestValidationError

from comment_stream.server.broadcast import BroadcastEngine
from comment_stream.server.comment_store import CommentStore
from comment_stream.shared.config import Settings
from comment_stream.shared.errors import CommentNotFoundError
from comment_stream.shared.events import EVENT_COMMENT
from comment_stream.shared.models import Comment, CommentCreated, CommentRequest
from comment_stream.shared.route_utils import get_engine, get_settings, get_store, require_json

router = APIRouter(prefix="/api/comments")


def check_lengths(body: CommentRequest, settings: Settings) -> None:
    """Raise a 400-style validation error for fields over the configured limits."""
    errors = []
    for field, limit in (("username", settings.USERNAME_MAX_LENGTH), ("message", settings.MESSAGE_MAX_LENGTH)):
        value = getattr(body, field)
        if len(value) > limit:
            errors.append(
                {
                    "type": "string_too_long",
                    "loc": ("body", field),
                    "msg": f"too long (max {limit} characters)",
                    "input": value,
                }
            )
    if errors:
        raise RequestValidationError(errors)


@router.post("", status_code=201, response_model=CommentCreated, dependencies=[Depends(require_json)])
def post_comment(
    body: CommentRequest,
    store: CommentStore = Depends(get_store),
    engine: BroadcastEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    check_lengths(body, settings)
    comment = store.create_comment(body.username, body.message)
    engine.broadcast(EVENT_COMMENT, comment)
    return CommentCreated(id=comment.id, timestamp=comment.created_at)


@router.get("", response_model=list[Comment])
def list_comments(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of comments, newest first"),
    store: CommentStore = Depends(get_store),
):
    return store.recent_comments(limit)


@router.get("/{comment_id}", response_model=Comment)
def get_comment(comment_id: UUID, store: CommentStore = Depends(get_store)):
    comment = store.find_by_id(comment_id)
    if comment is None:
        raise CommentNotFoundError(comment_id)
    return comment
