"""Exception hierarchy for the comment stream."""


class CommentStreamError(Exception):
    """Base class for every error raised by the comment stream core."""


class DeliveryError(CommentStreamError):
    """A single connection could not accept an envelope (closed, broken or backed up)."""


class SubscriptionInitError(CommentStreamError):
    """Sending the `connected` or history envelope to a new connection failed."""

    def __init__(self, connection_id: str, message: str):
        super().__init__(message)
        self.connection_id = connection_id


class RegistryStateError(CommentStreamError):
    """Double removal or use of a closed handle. Logged and swallowed, never propagated."""


class CommentNotFoundError(CommentStreamError):
    def __init__(self, comment_id):
        super().__init__(f"comment {comment_id} not found")
        self.comment_id = comment_id


class UnsupportedMediaTypeError(CommentStreamError):
    def __init__(self, content_type: str | None):
        super().__init__("Content-Type 'application/json' is required")
        self.content_type = content_type
