import asyncio

import httpx
from rich.console import Console

from comment_stream.client.sse_client import CommentStreamClient, StreamEvent, parse_sse_block
from comment_stream.client.viewer import Viewer
from comment_stream.shared.client_utils import backoff_delay, make_client_stats, with_reconnect
from comment_stream.shared.events import Envelope


def test_parse_json_block():
    block = Envelope(event_name="comment", payload={"id": "c1", "username": "alice"}).encode().decode()

    event = parse_sse_block(block.strip("\n"))

    assert event == StreamEvent(event="comment", data={"id": "c1", "username": "alice"})


def test_parse_text_block():
    assert parse_sse_block("event: connected\ndata: Connected to the comment stream") == StreamEvent(
        event="connected", data="Connected to the comment stream"
    )


def test_parse_untagged_block_defaults_to_message():
    assert parse_sse_block('data: {"a":1}') == StreamEvent(event="message", data={"a": 1})


def test_parse_joins_multiple_data_lines():
    assert parse_sse_block("event: note\ndata: first\ndata: second").data == "first\nsecond"


def test_comment_only_block_is_ignored():
    assert parse_sse_block(": ping - 2024-05-01 12:00:00") is None


def test_backoff_grows_and_caps():
    assert 2.0 <= backoff_delay(1) <= 2.2
    assert 8.0 <= backoff_delay(3) <= 8.8
    assert 32.0 <= backoff_delay(10) <= 35.2


def test_with_reconnect_retries_failed_connects():
    stats = make_client_stats()
    calls = []

    async def connect():
        calls.append(1)
        if len(calls) < 3:
            raise httpx.ConnectError("refused")
        await asyncio.sleep(10)

    asyncio.run(with_reconnect(connect, stats, duration_s=0.5, base_delay_s=0.01, max_delay_s=0.05))

    assert len(calls) == 3
    assert stats["reconnect_count"] == 2


def test_client_counts_events_by_type():
    client = CommentStreamClient("test", "http://localhost:8080/")
    received = []

    async def on_event(event):
        received.append(event.event)

    async def on_status(status):
        pass

    client.set_callbacks(on_event, on_status)

    async def feed():
        await client.on_event(StreamEvent("connected", "hi"))
        await client.on_event(StreamEvent("comment", {"username": "alice"}))
        await client.on_event(StreamEvent("ping", {"activeConnections": 1}))
        await client.disconnect()

    asyncio.run(feed())

    assert client.server_base_url == "http://localhost:8080"
    assert received == ["connected", "comment", "ping"]
    assert client.stats["events_received"] == 3
    assert client.stats["comments_received"] == 1
    assert client.stats["pings_received"] == 1


def test_viewer_prints_history_oldest_first():
    console = Console(record=True, width=120)
    viewer = Viewer(CommentStreamClient("test", "http://localhost:8080"), console=console)
    history = [
        {"username": "carol", "message": "third", "createdAt": "2024-05-01T12:00:03Z"},
        {"username": "alice", "message": "first", "createdAt": "2024-05-01T12:00:01Z"},
    ]

    async def show():
        await viewer.on_event(StreamEvent("connected", "Connected to the comment stream"))
        await viewer.on_event(StreamEvent("comment-history", history))
        await viewer.on_event(StreamEvent("comment", {"username": "bob", "message": "live"}))
        await viewer.client.disconnect()

    asyncio.run(show())

    output = console.export_text()
    assert "Connected to the comment stream" in output
    assert output.index("first") < output.index("third") < output.index("live")
