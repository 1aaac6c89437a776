"""
Broadcast channel for the ecosystem monitor.

- WebSocketBroadcaster: live fan-out of snapshots and alerts to dashboard
  clients, with topic subscriptions
- WebhookNotifier: relays each alert as a JSON POST to configured URLs
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import weakref
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

import aiohttp

from ecosystem_monitor.health.models import AggregateSnapshot, AlertEvent
from ecosystem_monitor.utils.async_helpers import async_retry

logger = logging.getLogger(__name__)

TOPIC_SNAPSHOT = "snapshot"
TOPIC_ALERT = "alert"
TOPIC_ALL = "all"


class WebSocketBroadcaster:
    """
    Real-time WebSocket broadcasting of monitor events.

    Each message is `{"topic": ..., "data": ..., "timestamp": ...}`. Clients
    subscribe to "snapshot", "alert" or "all".
    """

    def __init__(self, max_connections: int = 100):
        self._max_connections = max_connections
        self._connections: Dict[str, weakref.ref] = {}
        self._subscriptions: Dict[str, Set[str]] = defaultdict(set)  # topic -> connection_ids
        self._lock = asyncio.Lock()
        self._messages_sent = 0

    async def register(self, connection_id: str, websocket: Any, topics: Optional[List[str]] = None):
        """Register a WebSocket connection."""
        async with self._lock:
            if len(self._connections) >= self._max_connections:
                raise RuntimeError(f"Max connections ({self._max_connections}) reached")

            self._connections[connection_id] = weakref.ref(websocket)

            for topic in (topics or [TOPIC_ALL]):
                self._subscriptions[topic].add(connection_id)

            logger.info(f"[WS] Registered connection: {connection_id}, topics={topics or [TOPIC_ALL]}")

    async def unregister(self, connection_id: str):
        """Unregister a WebSocket connection."""
        async with self._lock:
            self._remove(connection_id)
        logger.info(f"[WS] Unregistered connection: {connection_id}")

    def _remove(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for topic in list(self._subscriptions.keys()):
            self._subscriptions[topic].discard(connection_id)
            if not self._subscriptions[topic]:
                del self._subscriptions[topic]

    async def broadcast(self, topic: str, data: Dict[str, Any]) -> int:
        """Broadcast a message to all subscribers of a topic. Returns deliveries."""
        async with self._lock:
            connection_ids = self._subscriptions.get(topic, set()) | self._subscriptions.get(TOPIC_ALL, set())
            if not connection_ids:
                return 0

            message = json.dumps(
                {"topic": topic, "data": data, "timestamp": time.time()},
                default=str,
            )

            delivered = 0
            dead_connections = []
            for conn_id in connection_ids:
                ws_ref = self._connections.get(conn_id)
                ws = ws_ref() if ws_ref is not None else None
                if ws is None:
                    dead_connections.append(conn_id)
                    continue

                try:
                    await ws.send_text(message)
                    delivered += 1
                except Exception as e:
                    logger.debug(f"[WS] Send to {conn_id} failed: {e}")
                    dead_connections.append(conn_id)

            for conn_id in dead_connections:
                self._remove(conn_id)

            self._messages_sent += delivered

        if dead_connections:
            logger.info(f"[WS] Dropped {len(dead_connections)} dead connection(s)")
        return delivered

    async def publish_snapshot(self, snapshot: AggregateSnapshot) -> None:
        """Snapshot listener for the health monitor."""
        await self.broadcast(TOPIC_SNAPSHOT, snapshot.to_dict())

    async def publish_alert(self, event: AlertEvent) -> None:
        """Alert listener for the health monitor."""
        await self.broadcast(TOPIC_ALERT, event.to_dict())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> Dict[str, Any]:
        """Get broadcaster statistics."""
        return {
            "active_connections": len(self._connections),
            "max_connections": self._max_connections,
            "messages_sent": self._messages_sent,
            "topics": list(self._subscriptions.keys()),
            "subscribers_per_topic": {t: len(s) for t, s in self._subscriptions.items()},
        }


class WebhookNotifier:
    """Send alerts to webhook endpoints."""

    def __init__(self, webhook_urls: Optional[List[str]] = None, timeout_seconds: float = 10.0):
        self._urls = list(webhook_urls or [])
        self._timeout = timeout_seconds
        self._sent = 0
        self._failed = 0

    @property
    def urls(self) -> List[str]:
        return list(self._urls)

    def add_url(self, url: str):
        """Add webhook URL."""
        if url not in self._urls:
            self._urls.append(url)

    async def notify(self, event: AlertEvent) -> int:
        """Send an alert to all webhooks. Returns the number of 2xx responses."""
        if not self._urls:
            return 0

        payload = event.to_dict()
        delivered = 0

        async with aiohttp.ClientSession() as session:
            for url in self._urls:
                try:
                    status = await self._post(session, url, payload)
                    if 200 <= status < 300:
                        delivered += 1
                        logger.debug(f"[Webhook] Sent alert to {url}")
                    else:
                        self._failed += 1
                        logger.warning(f"[Webhook] Failed to send to {url}: {status}")
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    self._failed += 1
                    logger.warning(f"[Webhook] Error sending to {url}: {e}")

        self._sent += delivered
        return delivered

    @async_retry(attempts=2, delay=0.5, exceptions=(aiohttp.ClientConnectionError,))
    async def _post(self, session: aiohttp.ClientSession, url: str, payload: Dict[str, Any]) -> int:
        async with session.post(
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as response:
            return response.status

    def get_stats(self) -> Dict[str, Any]:
        return {
            "urls": len(self._urls),
            "sent": self._sent,
            "failed": self._failed,
        }
