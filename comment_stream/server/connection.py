"""
MODULE OVERVIEW:
One subscriber's outbound channel.

WHAT IS HAPPENING HERE:
A `ConnectionHandle` sits between the broadcast core (which runs on whatever
thread produced the event: a threadpool worker handling a POST, the keep-alive
thread...) and the SSE response (which is consumed on the asyncio loop).

    producer thread --send()--> StreamTransport (locked deque) --wakeup--> stream() on the loop

`send()` never performs network I/O itself. It appends the encoded frame to a
bounded per-connection buffer and pokes the event loop with
`call_soon_threadsafe`. The loop-side `stream()` generator drains the buffer
and hands the bytes to sse-starlette.

Every way a connection can end (peer went away, idle timer elapsed, a write
failed, the server closed it) funnels into `_terminate()`. An atomic state
check there guarantees the registry's cleanup callback fires exactly once,
even when two terminal signals race on different threads.

The idle timeout has two halves. Until a consumer attaches, a daemon timer
armed at registration owns it. After that, `frames()` waits with a timeout.
"""
import asyncio
import threading
from collections import deque
from enum import Enum
from typing import AsyncIterator, Callable, Protocol
from uuid import uuid4

from loguru import logger

from comment_stream.shared.errors import DeliveryError, RegistryStateError
from comment_stream.shared.events import Envelope


class ConnectionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TerminalReason(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    ERROR = "error"


TerminalCallback = Callable[["ConnectionHandle", TerminalReason, BaseException | None], None]


class IdleTimeout(Exception):
    """No frame reached the stream within the connection's idle timeout."""


class Transport(Protocol):
    def write(self, frame: bytes) -> None: ...

    def close(self) -> None: ...


class StreamTransport:
    """Thread-safe bounded frame buffer drained by an asyncio consumer."""

    def __init__(self, max_backlog: int = 100):
        self.max_backlog = max_backlog
        self._frames: deque[bytes] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ready: asyncio.Event | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, frame: bytes) -> None:
        with self._lock:
            if self._closed:
                raise DeliveryError("transport is closed")
            if len(self._frames) >= self.max_backlog:
                raise DeliveryError(f"backlog full ({self.max_backlog} frames pending)")
            self._frames.append(frame)
            loop, ready = self._loop, self._ready
        if loop is not None:
            try:
                loop.call_soon_threadsafe(ready.set)
            except RuntimeError as e:
                raise DeliveryError(f"event loop is gone: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            loop, ready = self._loop, self._ready
        if loop is not None:
            try:
                loop.call_soon_threadsafe(ready.set)
            except RuntimeError:
                # Loop already shut down: nobody is left to wake.
                logger.debug("transport closed after its event loop stopped")

    async def frames(self, idle_timeout_s: float) -> AsyncIterator[bytes]:
        """Yield buffered frames until the transport is closed.

        Raises `IdleTimeout` when nothing arrives for `idle_timeout_s` seconds.
        """
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._ready = asyncio.Event()
            if self._frames or self._closed:
                self._ready.set()
        ready = self._ready

        while True:
            try:
                await asyncio.wait_for(ready.wait(), timeout=idle_timeout_s)
            except asyncio.TimeoutError:
                raise IdleTimeout(f"no traffic for {idle_timeout_s}s") from None
            ready.clear()
            with self._lock:
                batch = list(self._frames)
                self._frames.clear()
                closed = self._closed
            for frame in batch:
                yield frame
            if closed:
                return


class ConnectionHandle:
    def __init__(
        self,
        transport: Transport,
        idle_timeout_s: float,
        on_terminate: TerminalCallback,
        connection_id: str | None = None,
    ):
        self.connection_id = connection_id or f"conn-{uuid4().hex[:8]}"
        self.idle_timeout_s = idle_timeout_s
        self.transport = transport
        self.terminal_reason: TerminalReason | None = None
        self._on_terminate = on_terminate
        self._state = ConnectionState.OPEN
        self._lock = threading.Lock()
        self._idle_timer: threading.Timer | None = None
        self._attached = False

    def __repr__(self) -> str:
        return f"ConnectionHandle({self.connection_id}, {self._state.value})"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    def arm_idle_timer(self) -> None:
        """Time the handle out if no consumer attaches within `idle_timeout_s`.

        A response body that never starts (the peer left before the first
        byte) never runs `stream()`, so nothing else would end the handle.
        Once `stream()` starts it disarms this timer and applies its own
        idle timeout.
        """
        with self._lock:
            if self._state is not ConnectionState.OPEN or self._attached or self._idle_timer is not None:
                return
            timer = threading.Timer(self.idle_timeout_s, self._on_unattended)
            timer.daemon = True
            self._idle_timer = timer
        timer.start()

    def _disarm_idle_timer(self) -> None:
        with self._lock:
            timer, self._idle_timer = self._idle_timer, None
        if timer is not None:
            timer.cancel()

    def _on_unattended(self) -> None:
        if self.timeout():
            logger.info(
                f"connection_id={self.connection_id} event=timeout "
                f"reason='no consumer within {self.idle_timeout_s}s'"
            )

    def send(self, envelope: Envelope) -> None:
        """Write one envelope. Raises `DeliveryError`; never retries."""
        self.write_frame(envelope.encode())

    def write_frame(self, frame: bytes) -> None:
        if not self.is_open:
            raise DeliveryError(f"connection {self.connection_id} is {self._state.value}")
        try:
            self.transport.write(frame)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"write to {self.connection_id} failed: {e}") from e

    # Terminal signals. Only the first one to arrive has any effect.

    def complete(self) -> bool:
        return self._terminate(TerminalReason.COMPLETED)

    def timeout(self) -> bool:
        return self._terminate(TerminalReason.TIMEOUT)

    def fail(self, error: BaseException | None = None) -> bool:
        return self._terminate(TerminalReason.ERROR, error)

    def close(self) -> bool:
        """Server-side close, used at shutdown. Idempotent."""
        return self.complete()

    def _terminate(self, reason: TerminalReason, error: BaseException | None = None) -> bool:
        with self._lock:
            if self._state is not ConnectionState.OPEN:
                return False
            self._state = ConnectionState.CLOSING
            self.terminal_reason = reason

        self._disarm_idle_timer()
        try:
            self.transport.close()
        except Exception as e:
            logger.warning(f"connection_id={self.connection_id} event=close_failed reason='{e}'")

        try:
            self._on_terminate(self, reason, error)
        except RegistryStateError as e:
            logger.warning(f"connection_id={self.connection_id} event=cleanup_ignored reason='{e}'")
        finally:
            with self._lock:
                self._state = ConnectionState.CLOSED
        return True

    async def stream(self) -> AsyncIterator[bytes]:
        """Frames for the HTTP response body, ending on close, idle timeout or disconnect."""
        with self._lock:
            self._attached = True
        self._disarm_idle_timer()
        try:
            async for frame in self.transport.frames(self.idle_timeout_s):
                yield frame
        except IdleTimeout:
            self.timeout()
        except Exception as e:
            self.fail(e)
            raise
        finally:
            # Normal end, cancellation on client disconnect or generator close.
            self.complete()
