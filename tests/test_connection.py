import asyncio
import threading

import pytest

from comment_stream.server.connection import (
    ConnectionHandle,
    ConnectionState,
    StreamTransport,
    TerminalReason,
)
from comment_stream.shared.errors import DeliveryError, RegistryStateError
from comment_stream.shared.events import Envelope
from conftest import RecordingTransport


class _Terminations:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, handle, reason, error):
        with self._lock:
            self.calls.append((handle, reason, error))


def _handle(transport=None, idle_timeout_s=300.0):
    terminations = _Terminations()
    handle = ConnectionHandle(transport or RecordingTransport(), idle_timeout_s, terminations)
    return handle, terminations


def test_send_writes_encoded_frame():
    transport = RecordingTransport()
    handle, _ = _handle(transport)

    handle.send(Envelope(event_name="comment", payload={"id": "c1"}))

    assert transport.events() == [("comment", {"id": "c1"})]


def test_send_wraps_transport_failure_in_delivery_error():
    handle, terminations = _handle(RecordingTransport(fail_with=BrokenPipeError("pipe")))

    with pytest.raises(DeliveryError):
        handle.send(Envelope(event_name="comment", payload="x"))

    # The caller decides what to do with a failed send
    assert handle.is_open
    assert terminations.calls == []


def test_send_after_close_raises():
    handle, _ = _handle()
    handle.close()

    with pytest.raises(DeliveryError):
        handle.send(Envelope(payload="late"))


def test_close_is_idempotent():
    transport = RecordingTransport()
    handle, terminations = _handle(transport)

    assert handle.close() is True
    assert handle.close() is False

    assert handle.state is ConnectionState.CLOSED
    assert handle.terminal_reason is TerminalReason.COMPLETED
    assert transport.close_calls == 1
    assert len(terminations.calls) == 1


def test_first_terminal_signal_wins():
    handle, terminations = _handle()
    error = RuntimeError("boom")

    assert handle.fail(error) is True
    assert handle.timeout() is False
    assert handle.complete() is False

    assert terminations.calls == [(handle, TerminalReason.ERROR, error)]


def test_racing_terminal_signals_notify_exactly_once():
    for _ in range(20):
        handle, terminations = _handle()
        barrier = threading.Barrier(3)

        def signal(fn):
            barrier.wait()
            fn()

        threads = [
            threading.Thread(target=signal, args=(handle.complete,)),
            threading.Thread(target=signal, args=(handle.timeout,)),
            threading.Thread(target=signal, args=(lambda: handle.fail(RuntimeError("x")),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(terminations.calls) == 1
        assert handle.state is ConnectionState.CLOSED


def test_registry_state_error_in_cleanup_is_swallowed():
    def cleanup(handle, reason, error):
        raise RegistryStateError("already gone")

    handle = ConnectionHandle(RecordingTransport(), 300.0, cleanup)

    assert handle.close() is True
    assert handle.state is ConnectionState.CLOSED


def test_stream_transport_rejects_writes_past_backlog():
    transport = StreamTransport(max_backlog=2)
    transport.write(b"one")
    transport.write(b"two")

    with pytest.raises(DeliveryError):
        transport.write(b"three")


def test_stream_transport_rejects_writes_after_close():
    transport = StreamTransport()
    transport.close()

    with pytest.raises(DeliveryError):
        transport.write(b"late")


def test_stream_drains_buffered_frames_then_ends_on_close():
    handle, terminations = _handle(StreamTransport())
    handle.send(Envelope(event_name="connected", payload="hello"))
    handle.send(Envelope(event_name="comment", payload={"id": "c1"}))
    handle.close()

    async def collect():
        return [frame async for frame in handle.stream()]

    frames = asyncio.run(collect())

    assert frames == [b"event: connected\ndata: hello\n\n", b'event: comment\ndata: {"id":"c1"}\n\n']
    assert len(terminations.calls) == 1


def test_stream_receives_frames_written_from_another_thread():
    handle, _ = _handle(StreamTransport())

    async def collect():
        received = []
        loop = asyncio.get_running_loop()

        def produce():
            for i in range(3):
                handle.send(Envelope(event_name="comment", payload={"n": i}))
            handle.close()

        loop.call_later(0.01, lambda: threading.Thread(target=produce).start())
        async for frame in handle.stream():
            received.append(frame)
        return received

    frames = asyncio.run(asyncio.wait_for(collect(), timeout=5))

    assert frames == [f'event: comment\ndata: {{"n":{i}}}\n\n'.encode() for i in range(3)]


def test_idle_stream_times_out_once():
    handle, terminations = _handle(StreamTransport(), idle_timeout_s=0.05)

    async def collect():
        return [frame async for frame in handle.stream()]

    frames = asyncio.run(asyncio.wait_for(collect(), timeout=5))

    assert frames == []
    assert handle.terminal_reason is TerminalReason.TIMEOUT
    assert [reason for _, reason, _ in terminations.calls] == [TerminalReason.TIMEOUT]


def test_cancelled_stream_completes_the_handle():
    handle, terminations = _handle(StreamTransport())

    async def consume_then_cancel():
        async def consume():
            async for _ in handle.stream():
                pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(consume_then_cancel())

    assert handle.terminal_reason is TerminalReason.COMPLETED
    assert len(terminations.calls) == 1
