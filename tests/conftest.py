from __future__ import annotations

import json
import threading

import pytest

from comment_stream.server.broadcast import BroadcastEngine
from comment_stream.server.connection_manager import ConnectionRegistry


class RecordingTransport:
    """Keeps every frame written to it. Set `fail_with` to make writes raise."""

    def __init__(self, fail_with: Exception | None = None):
        self.frames: list[bytes] = []
        self.fail_with = fail_with
        self.closed = False
        self.close_calls = 0
        self._lock = threading.Lock()

    def write(self, frame: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.frames.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def events(self) -> list[tuple[str | None, object]]:
        return [decode_frame(frame) for frame in self.frames]


def decode_frame(frame: bytes) -> tuple[str | None, object]:
    """Split a frame into (event name, decoded data)."""
    text = frame.decode("utf-8")
    assert text.endswith("\n\n")
    event = None
    data_lines = []
    for line in text[:-2].split("\n"):
        field, _, value = line.partition(": ")
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    data = "\n".join(data_lines)
    try:
        return event, json.loads(data)
    except json.JSONDecodeError:
        return event, data


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(idle_timeout_s=300.0, max_backlog=100)


@pytest.fixture
def engine(registry: ConnectionRegistry) -> BroadcastEngine:
    return BroadcastEngine(registry)

