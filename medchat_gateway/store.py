"""
Process-scoped session store.

Holds the registry of connected clients and the per-client rate limiter.
A single instance is created at startup and injected into the chat service
and the HTTP handlers. All mutation happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .llm.rate_limiting import RateLimitConfig, RateLimitResult, SlidingWindowLimiter

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """Metadata about one connected client."""
    connection_id: str
    ip: str
    user_agent: str = ""
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    messages: int = 0
    turns: set[asyncio.Task] = field(default_factory=set, repr=False)


class SessionStore:
    """Connection registry and rate-limit counters for the process."""

    def __init__(self, rate_limit_config: RateLimitConfig | None = None):
        self._connections: dict[str, ConnectionInfo] = {}
        self.rate_limiter = SlidingWindowLimiter(rate_limit_config or RateLimitConfig())
        self.started_at = time.monotonic()

    def register(
        self, connection_id: str, ip: str, user_agent: str = ""
    ) -> ConnectionInfo:
        """Record a new connection; an existing id is replaced."""
        info = ConnectionInfo(connection_id=connection_id, ip=ip, user_agent=user_agent)
        self._connections[connection_id] = info
        logger.info(f"Client connected: {connection_id} from {ip}")
        return info

    def unregister(self, connection_id: str) -> ConnectionInfo | None:
        """Remove a connection and cancel its in-flight turns."""
        info = self._connections.pop(connection_id, None)
        if info is None:
            return None

        pending = [task for task in info.turns if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info(
                f"Cancelled {len(pending)} in-flight turn(s) for {connection_id}"
            )
        self.rate_limiter.prune()
        logger.info(f"Client disconnected: {connection_id}")
        return info

    def get(self, connection_id: str) -> ConnectionInfo | None:
        return self._connections.get(connection_id)

    def track_turn(self, connection_id: str, task: asyncio.Task) -> None:
        """Attach a turn task to its connection until the task finishes."""
        info = self._connections.get(connection_id)
        if info is None:
            task.cancel()
            return
        info.messages += 1
        info.turns.add(task)
        task.add_done_callback(info.turns.discard)

    def check_rate_limit(self, connection_id: str) -> RateLimitResult:
        """Apply the rate limiter using the connection's client address."""
        info = self._connections.get(connection_id)
        key = info.ip if info else connection_id
        return self.rate_limiter.check(key)

    def snapshot(self) -> list[dict[str, Any]]:
        """Describe every live connection for the health endpoint."""
        return [
            {
                "id": info.connection_id,
                "ip": info.ip,
                "userAgent": info.user_agent,
                "connectedAt": info.connected_at.isoformat(),
                "messages": info.messages,
                "activeTurns": sum(1 for task in info.turns if not task.done()),
            }
            for info in self._connections.values()
        ]

    @property
    def count(self) -> int:
        return len(self._connections)

    @property
    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 3)
