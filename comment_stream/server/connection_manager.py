"""
MODULE OVERVIEW:
The registry of live viewer connections.

WHAT IS HAPPENING HERE:
This object holds a reference to every open SSE stream. It is shared by the
subscription endpoint (adds handles), the broadcast engine (reads snapshots,
reaps dead handles) and the keep-alive thread (reads the size), all of which
may run on different threads at the same time.

The rule that keeps it deadlock-free: the lock guards the dict and nothing
else. It is held to add, remove or copy, and released before any handle is
written to or closed.
"""
import threading

from loguru import logger

from comment_stream.server.connection import (
    ConnectionHandle,
    StreamTransport,
    TerminalReason,
    Transport,
)
from comment_stream.shared.errors import RegistryStateError


class ConnectionRegistry:
    def __init__(self, idle_timeout_s: float = 300.0, max_backlog: int = 100):
        self.idle_timeout_s = idle_timeout_s
        self.max_backlog = max_backlog
        # Insertion ordered, so snapshots follow registration order.
        self._handles: dict[str, ConnectionHandle] = {}
        self._lock = threading.Lock()
        self.total_registered = 0

    def register(self, transport: Transport | None = None) -> ConnectionHandle:
        """Create, wire up and add a handle. Returned before anything is sent to it."""
        if transport is None:
            transport = StreamTransport(max_backlog=self.max_backlog)
        handle = ConnectionHandle(
            transport=transport,
            idle_timeout_s=self.idle_timeout_s,
            on_terminate=self._on_terminated,
        )
        with self._lock:
            if not handle.is_open:
                raise RegistryStateError(f"refusing to register {handle!r}")
            self._handles[handle.connection_id] = handle
            self.total_registered += 1
            count = len(self._handles)
        handle.arm_idle_timer()
        logger.debug(f"connection_id={handle.connection_id} protocol=sse event=connect active={count}")
        return handle

    def unregister(self, handle: ConnectionHandle) -> bool:
        """Remove `handle` if present. Removing an absent handle is a no-op."""
        with self._lock:
            removed = self._handles.pop(handle.connection_id, None) is not None
            count = len(self._handles)
        if removed:
            logger.debug(f"connection_id={handle.connection_id} protocol=sse event=disconnect active={count}")
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._handles)

    def snapshot(self) -> list[ConnectionHandle]:
        with self._lock:
            return list(self._handles.values())

    def close_all(self) -> int:
        """Close every live handle. Shutdown only."""
        handles = self.snapshot()
        for handle in handles:
            try:
                handle.close()
            except Exception as e:
                logger.warning(f"connection_id={handle.connection_id} event=close_failed reason='{e}'")
        # Closing already unregisters each handle. Handles registered after the
        # snapshot are left alone.
        with self._lock:
            for handle in handles:
                self._handles.pop(handle.connection_id, None)
        logger.info(f"Closed {len(handles)} SSE connections.")
        return len(handles)

    def _on_terminated(self, handle: ConnectionHandle, reason: TerminalReason, error: BaseException | None) -> None:
        if reason is TerminalReason.ERROR:
            logger.warning(f"connection_id={handle.connection_id} protocol=sse event=error reason='{error}'")
        else:
            logger.debug(f"connection_id={handle.connection_id} protocol=sse event={reason.value}")
        self.unregister(handle)
