"""
MODULE OVERVIEW:
Periodic `ping` heartbeat to every open stream.

WHAT IS HAPPENING HERE:
Proxies and load balancers drop HTTP responses that stay silent for too long,
and a viewer whose laptop went to sleep never tells us it left. A heartbeat
that lands well before the idle timeout solves both: live connections stay
warm, and dead ones fail their write and get reaped by the broadcast engine.

The scheduler runs on its own daemon thread, started and stopped by the
application lifespan. It shares the broadcast engine with comment posts; the
two simply interleave.
"""
import threading
import time

from loguru import logger

from comment_stream.server.broadcast import BroadcastEngine
from comment_stream.server.connection_manager import ConnectionRegistry
from comment_stream.shared.config import MAX_KEEPALIVE_RATIO
from comment_stream.shared.events import EVENT_PING
from comment_stream.shared.models import HeartbeatPayload


class KeepAliveScheduler:
    def __init__(self, registry: ConnectionRegistry, engine: BroadcastEngine, interval_s: float):
        if interval_s <= 0:
            raise ValueError("keep-alive interval must be positive")
        if interval_s > registry.idle_timeout_s * MAX_KEEPALIVE_RATIO:
            raise ValueError(
                f"keep-alive interval {interval_s}s leaves no margin before the "
                f"{registry.idle_timeout_s}s idle timeout"
            )
        self.registry = registry
        self.engine = engine
        self.interval_s = interval_s
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="sse-keepalive", daemon=True)
        self._thread.start()
        logger.info(f"Keep-alive started interval_s={self.interval_s} idle_timeout_s={self.registry.idle_timeout_s}")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("Keep-alive stopped.")

    def tick(self) -> bool:
        """Send one heartbeat. Returns False when there was nobody to send it to."""
        active = self.registry.size()
        if active == 0:
            return False
        logger.debug(f"event=ping active={active}")
        self.engine.broadcast(EVENT_PING, HeartbeatPayload(
            timestamp=int(time.time() * 1000),
            active_connections=active,
        ))
        self.ticks += 1
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.tick()
            except Exception:
                logger.exception("Keep-alive tick failed")
