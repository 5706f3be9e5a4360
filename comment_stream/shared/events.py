"""
MODULE OVERVIEW:
The unit of broadcast: an optional event name plus an opaque payload.

WHAT IS HAPPENING HERE:
An `Envelope` knows how to turn itself into an SSE frame:

    event: comment
    data: {"id":"...","username":"alice","message":"hi","createdAt":"..."}
    <blank line>

Strings travel as raw text, everything else (pydantic models, lists of them,
dicts, numbers) as compact single-line JSON with camelCase keys. The framing
itself is delegated to sse-starlette's `ServerSentEvent` so that multi-line
text payloads are split into several `data:` lines exactly like the rest of
the SSE stack does it.
"""
import json
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic_core import to_jsonable_python
from sse_starlette.sse import ServerSentEvent

EVENT_CONNECTED = "connected"
EVENT_COMMENT = "comment"
EVENT_COMMENT_HISTORY = "comment-history"
EVENT_PING = "ping"

FRAME_SEPARATOR = "\n"


def serialize_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(
        to_jsonable_python(payload, by_alias=True),
        separators=(",", ":"),
        ensure_ascii=False,
    )


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event_name: str | None = None
    payload: Any = None

    def data(self) -> str:
        return serialize_payload(self.payload)

    def encode(self) -> bytes:
        """Render the envelope as one SSE frame, terminated by a blank line."""
        return ServerSentEvent(data=self.data(), event=self.event_name, sep=FRAME_SEPARATOR).encode()
