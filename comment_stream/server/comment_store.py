"""
MODULE OVERVIEW:
Bounded in-memory comment storage.

WHAT IS HAPPENING HERE:
Comments are kept in an insertion-ordered dict keyed by id. When the store is
full the oldest comment is evicted, the same rolling-buffer idea the short poll
history used. Nothing survives a restart.
"""
import threading
from collections import OrderedDict
from uuid import UUID

from loguru import logger

from comment_stream.shared.models import Comment


class CommentStore:
    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._comments: OrderedDict[UUID, Comment] = OrderedDict()
        self._lock = threading.Lock()

    def create_comment(self, username: str, message: str) -> Comment:
        return self.save(Comment(username=username, message=message))

    def save(self, comment: Comment) -> Comment:
        with self._lock:
            self._comments[comment.id] = comment
            self._comments.move_to_end(comment.id)
            while len(self._comments) > self.capacity:
                evicted, _ = self._comments.popitem(last=False)
                logger.debug(f"comment_id={evicted} event=evicted capacity={self.capacity}")
        return comment

    def recent_comments(self, limit: int) -> list[Comment]:
        """Up to `limit` comments, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            comments = list(self._comments.values())
        return comments[::-1][:limit]

    def find_by_id(self, comment_id: UUID) -> Comment | None:
        with self._lock:
            return self._comments.get(comment_id)

    def count(self) -> int:
        with self._lock:
            return len(self._comments)

    def clear(self) -> None:
        with self._lock:
            self._comments.clear()
