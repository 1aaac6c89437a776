"""
API module for the ecosystem monitor.

Provides:
- FastAPI dashboard server (REST + WebSocket)
- WebSocket broadcaster and webhook notifier for alerts
"""

from ecosystem_monitor.api.broadcast import (
    WebSocketBroadcaster,
    WebhookNotifier,
    TOPIC_ALERT,
    TOPIC_SNAPSHOT,
)

__all__ = [
    "WebSocketBroadcaster",
    "WebhookNotifier",
    "TOPIC_ALERT",
    "TOPIC_SNAPSHOT",
]
