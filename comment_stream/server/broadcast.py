"""
MODULE OVERVIEW:
Fan-out of one envelope to every live connection.

WHAT IS HAPPENING HERE:
1. Take a snapshot of the registry (brief lock, then released).
2. Send to each handle in the snapshot. A handle registered after the
   snapshot joins the next broadcast, not this one.
3. Every handle whose send failed goes into a dead list. Delivery to the
   remaining handles carries on regardless.
4. After the pass, each dead handle is unregistered once and terminated
   through its error path.

Nothing here raises to the producer: posting a comment never fails because a
viewer's socket broke.
"""
import threading
from typing import Any

from loguru import logger

from comment_stream.server.connection import ConnectionHandle
from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.shared.errors import DeliveryError
from comment_stream.shared.events import Envelope


class BroadcastEngine:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._stats_lock = threading.Lock()
        self.broadcasts = 0
        self.deliveries = 0
        self.failed_deliveries = 0

    def broadcast(self, event_name: str | None, payload: Any) -> int:
        """Deliver to every live handle. Returns the number of successful deliveries."""
        handles = self.registry.snapshot()
        if not handles:
            logger.debug(f"event={event_name} broadcast=skipped reason=no_connections")
            return 0

        try:
            frame = Envelope(event_name=event_name, payload=payload).encode()
        except Exception:
            logger.exception(f"event={event_name} broadcast=dropped reason=unserializable_payload")
            return 0

        dead: list[tuple[ConnectionHandle, DeliveryError]] = []
        delivered = 0
        for handle in handles:
            try:
                handle.write_frame(frame)
                delivered += 1
            except DeliveryError as e:
                logger.warning(f"connection_id={handle.connection_id} event={event_name} delivery=failed reason='{e}'")
                dead.append((handle, e))

        for handle, error in dead:
            self.registry.unregister(handle)
            handle.fail(error)

        with self._stats_lock:
            self.broadcasts += 1
            self.deliveries += delivered
            self.failed_deliveries += len(dead)
        logger.debug(f"event={event_name} broadcast=done delivered={delivered} reaped={len(dead)}")
        return delivered

    def send_to(self, handle: ConnectionHandle, event_name: str | None, payload: Any) -> None:
        """Send to a single handle only. Raises `DeliveryError`."""
        handle.send(Envelope(event_name=event_name, payload=payload))
