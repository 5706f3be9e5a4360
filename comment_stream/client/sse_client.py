"""
MODULE OVERVIEW:
The Server-Sent Events HTTP client for the comment stream.

WHAT IS HAPPENING HERE:
We use HTTPX `stream()` to keep the response body open and parse the raw
`event: ` / `data: ` blocks by hand, the same way a browser's EventSource
does under the hood. JSON payloads are decoded; plain text (the `connected`
greeting) is kept as a string.
"""
import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from comment_stream.shared.client_utils import make_client_stats, with_reconnect
from comment_stream.shared.events import EVENT_COMMENT, EVENT_PING

STREAM_PATH = "/api/sse/comments"


@dataclass
class StreamEvent:
    event: str
    data: Any


def parse_sse_block(block: str) -> StreamEvent | None:
    """Parse one blank-line-delimited SSE block. Comment-only blocks yield None."""
    event_type = "message"
    data_lines = []

    for line in block.splitlines():
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)

    if not data_lines:
        return None
    data_str = "\n".join(data_lines)
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        data = data_str
    return StreamEvent(event=event_type, data=data)


class CommentStreamClient:
    def __init__(self, client_id: str, server_base_url: str):
        self.client_id = client_id
        self.server_base_url = server_base_url.rstrip('/')

        self.on_event_callback: Callable[[StreamEvent], Awaitable[None]] | None = None
        self.on_status_change_callback: Callable[[str], Awaitable[None]] | None = None

        self.stats = make_client_stats()
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))

    def set_callbacks(self, on_event, on_status_change):
        self.on_event_callback = on_event
        self.on_status_change_callback = on_status_change

    async def _emit_status(self, status: str):
        if self.on_status_change_callback:
            await self.on_status_change_callback(status)

    async def on_event(self, event: StreamEvent):
        self.stats["events_received"] += 1
        self.stats["last_event_at"] = datetime.now(timezone.utc).isoformat()
        if event.event == EVENT_COMMENT:
            self.stats["comments_received"] += 1
        elif event.event == EVENT_PING:
            self.stats["pings_received"] += 1
        if self.on_event_callback:
            await self.on_event_callback(event)

    async def connect(self) -> None:
        url = f"{self.server_base_url}{STREAM_PATH}"

        async with self.client.stream("GET", url, headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"}) as response:
            response.raise_for_status()
            await self._emit_status("ACTIVE")

            buffer = ""
            async for chunk in response.aiter_text():
                self.stats["bytes_received"] += len(chunk)
                buffer += chunk.replace("\r\n", "\n")
                while "\n\n" in buffer:
                    block, buffer = buffer.split("\n\n", 1)
                    event = parse_sse_block(block)
                    if event is not None:
                        await self.on_event(event)

        await self._emit_status("RECONNECTING")

    async def disconnect(self) -> None:
        await self.client.aclose()

    async def run(self, duration_s: float = 60.0) -> None:
        try:
            await with_reconnect(self.connect, self.stats, duration_s, client_id=self.client_id)
        except asyncio.CancelledError:
            pass
        finally:
            await self.disconnect()
            await self._emit_status("CLOSED")
