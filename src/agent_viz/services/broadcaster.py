"""Change-notification broadcaster for SSE (Server-Sent Events).

Subscribers only learn that the state changed; they re-fetch GET /state
for the snapshot itself.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from queue import Empty, Queue
from typing import Any, Optional

logger = logging.getLogger(__name__)

STATE_CHANGED = "state-changed"


@dataclass
class SSEClient:
    """Represents a connected SSE client."""

    client_id: str
    connected_at: datetime
    last_event_at: Optional[datetime] = None
    event_queue: Queue = field(default_factory=Queue)
    is_active: bool = True


@dataclass
class SSEEvent:
    """Represents an SSE event to be broadcast."""

    event_type: str
    data: dict
    event_id: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def format(self) -> str:
        """Format the event as an SSE string."""
        lines = [
            f"event: {self.event_type}",
            f"id: {self.event_id}",
            f"data: {json.dumps(self.data)}",
            "",
            "",
        ]
        return "\n".join(lines)


class Broadcaster:
    """SSE broadcaster. Thread-safe client registry with per-client queues."""

    def __init__(
        self,
        max_connections: int = 100,
        keepalive_interval: float = 20.0,
        connection_timeout: float = 120.0,
        retry_after: int = 5,
    ) -> None:
        self._max_connections = max_connections
        self._keepalive_interval = keepalive_interval
        self._connection_timeout = connection_timeout
        self._retry_after = retry_after

        self._clients: dict[str, SSEClient] = {}
        self._lock = threading.Lock()
        self._event_id_counter = 0

        self._running = False
        self._cleanup_thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

        logger.info(
            f"Broadcaster initialized: max_connections={max_connections}, "
            f"keepalive_interval={keepalive_interval}s"
        )

    @property
    def active_connections(self) -> int:
        with self._lock:
            return len(self._clients)

    @property
    def max_connections(self) -> int:
        return self._max_connections

    @property
    def retry_after(self) -> int:
        return self._retry_after

    @property
    def keepalive_interval(self) -> float:
        return self._keepalive_interval

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the broadcaster and cleanup thread."""
        if self._running:
            return
        self._running = True
        self._shutdown_event.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop, daemon=True, name="sse-cleanup",
        )
        self._cleanup_thread.start()
        logger.info("Broadcaster started")

    def stop(self) -> None:
        """Stop the broadcaster and close all connections."""
        if not self._running:
            return
        self._running = False
        self._shutdown_event.set()
        with self._lock:
            for client in self._clients.values():
                client.is_active = False
                client.event_queue.put(None)
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5.0)
        with self._lock:
            self._clients.clear()
        logger.info("Broadcaster stopped")

    def can_accept_connection(self) -> bool:
        return self.active_connections < self._max_connections

    def register_client(self) -> Optional[str]:
        """Register a new SSE client. Returns client_id or None if at limit."""
        client_id = str(uuid.uuid4())
        client = SSEClient(client_id=client_id, connected_at=datetime.now(timezone.utc))
        with self._lock:
            if len(self._clients) >= self._max_connections:
                logger.warning(f"Connection limit reached ({self._max_connections})")
                return None
            self._clients[client_id] = client
        logger.info(f"Client registered: {client_id}")
        return client_id

    def unregister_client(self, client_id: str) -> bool:
        """Remove an SSE client. Returns True if found."""
        with self._lock:
            if client_id in self._clients:
                del self._clients[client_id]
                logger.info(f"Client unregistered: {client_id}")
                return True
        return False

    def get_client(self, client_id: str) -> Optional[SSEClient]:
        with self._lock:
            return self._clients.get(client_id)

    def broadcast(self, event_type: str, data: dict) -> int:
        """Queue an event for every active client. Never blocks on a slow reader."""
        with self._lock:
            self._event_id_counter += 1
            event = SSEEvent(event_type=event_type, data=data, event_id=self._event_id_counter)
            sent_count = 0
            for client in self._clients.values():
                if client.is_active:
                    client.event_queue.put(event)
                    client.last_event_at = datetime.now(timezone.utc)
                    sent_count += 1

        logger.debug(f"Broadcast: type={event_type}, id={event.event_id}, sent_to={sent_count}")
        return sent_count

    def get_next_event(self, client_id: str, timeout: Optional[float] = None) -> Optional[SSEEvent]:
        """Get the next event for a client, blocking up to the keepalive interval."""
        client = self.get_client(client_id)
        if not client or not client.is_active:
            return None
        if timeout is None:
            timeout = self._keepalive_interval
        try:
            return client.event_queue.get(timeout=timeout)
        except Empty:
            client.last_event_at = datetime.now(timezone.utc)
            return None

    def _cleanup_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                self._cleanup_stale_connections()
            except Exception as e:
                logger.error(f"Error in SSE cleanup loop: {e}")
            self._shutdown_event.wait(self._connection_timeout / 2)

    def _cleanup_stale_connections(self) -> None:
        now = datetime.now(timezone.utc)
        stale_clients = []
        with self._lock:
            for client_id, client in self._clients.items():
                last = client.last_event_at or client.connected_at
                if (now - last).total_seconds() > self._connection_timeout:
                    stale_clients.append(client_id)
        for client_id in stale_clients:
            client = self.get_client(client_id)
            if client:
                client.is_active = False
                client.event_queue.put(None)
            self.unregister_client(client_id)
            logger.info(f"Cleaned up stale connection: {client_id}")

    def get_health_status(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self._running else "stopped",
            "active_connections": self.active_connections,
            "max_connections": self._max_connections,
            "running": self._running,
        }


# Global broadcaster instance
_broadcaster: Optional[Broadcaster] = None
_broadcaster_lock = threading.Lock()


def get_broadcaster() -> Broadcaster:
    """Get the global broadcaster instance."""
    if _broadcaster is None:
        raise RuntimeError("Broadcaster not initialized. Call init_broadcaster first.")
    return _broadcaster


def init_broadcaster(config: Optional[dict] = None) -> Broadcaster:
    """Initialize the global broadcaster instance."""
    global _broadcaster
    with _broadcaster_lock:
        if _broadcaster is not None:
            return _broadcaster
        sse_config = (config or {}).get("sse", {})
        _broadcaster = Broadcaster(
            max_connections=sse_config.get("max_connections", 100),
            keepalive_interval=sse_config.get("keepalive_seconds", 20),
            connection_timeout=sse_config.get("connection_timeout_seconds", 120),
            retry_after=sse_config.get("retry_after_seconds", 5),
        )
        _broadcaster.start()
        return _broadcaster


def shutdown_broadcaster() -> None:
    """Shutdown the global broadcaster instance."""
    global _broadcaster
    with _broadcaster_lock:
        if _broadcaster is not None:
            _broadcaster.stop()
            _broadcaster = None
