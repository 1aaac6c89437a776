"""
Ecosystem Monitor API Server.

Provides REST and WebSocket endpoints for:
- Latest aggregate health snapshot
- Snapshot history and recent alerts
- Registered probe definitions
- Manual "check now" cycles
- Live snapshot/alert streaming

Usage:
    python -m ecosystem_monitor.api.server
    # or
    uvicorn ecosystem_monitor.api.server:app --port 8005
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ecosystem_monitor import __version__
from ecosystem_monitor.api.broadcast import WebhookNotifier, WebSocketBroadcaster, TOPIC_SNAPSHOT
from ecosystem_monitor.config import ConfigLoadError, MonitorConfig, build_registry, get_config, load_config
from ecosystem_monitor.health import CycleInProgress, HealthMonitor, set_health_monitor
from ecosystem_monitor.probes.registry import get_probe_registry
from ecosystem_monitor.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# ============================================================================
# Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Liveness of the monitor process itself."""
    status: str = "healthy"
    version: str = __version__
    timestamp: str
    monitor_running: bool = False
    probes_registered: int = 0
    cycles_completed: int = 0
    cycle_in_progress: bool = False
    websocket_connections: int = 0


class ProbeResultResponse(BaseModel):
    """One probe's result within a snapshot."""
    probe_id: str
    timestamp: str
    outcome: str
    status: str
    latency_ms: Optional[int] = None
    raw_value: Any = None
    error_message: Optional[str] = None


class SnapshotResponse(BaseModel):
    """One aggregation cycle."""
    cycle_id: str
    timestamp: str
    overall_score: int = Field(ge=0, le=100)
    overall_status: str
    healthy_count: int
    total_count: int
    availability: float
    duration_ms: Optional[int] = None
    per_probe: Dict[str, ProbeResultResponse] = Field(default_factory=dict)


class HistoryResponse(BaseModel):
    """Recent snapshots, newest first."""
    count: int
    capacity: int
    availability: float
    snapshots: List[SnapshotResponse]


class AlertResponse(BaseModel):
    """A status transition."""
    id: str
    probe_id: Optional[str] = None
    previous_status: str
    new_status: str
    severity: str
    message: str
    timestamp: str


class ProbeDefinitionResponse(BaseModel):
    """A registered probe definition."""
    id: str
    kind: str
    target: str
    timeout_ms: int
    interval_ms: int
    scoring: str
    penalty: int
    metric: Optional[str] = None
    parser: Optional[str] = None
    degraded_latency_ms: Optional[int] = None
    options: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Wiring
# ============================================================================

def build_monitor(config: MonitorConfig) -> HealthMonitor:
    """Create the health monitor for a loaded configuration."""
    registry = get_probe_registry()
    registry.clear()
    build_registry(config, registry)

    monitor = HealthMonitor(
        registry,
        history_capacity=config.history_capacity,
        alert_history_size=config.alert_history_size,
        check_interval_seconds=config.check_interval_seconds,
    )
    set_health_monitor(monitor)
    return monitor


def _wire(app: FastAPI, monitor: HealthMonitor, config: Optional[MonitorConfig]) -> None:
    broadcaster: WebSocketBroadcaster = app.state.broadcaster
    monitor.add_alert_listener(broadcaster.publish_alert)
    monitor.add_snapshot_listener(broadcaster.publish_snapshot)

    if config is not None and config.webhook_urls:
        notifier = WebhookNotifier(config.webhook_urls, config.webhook_timeout_seconds)
        monitor.add_alert_listener(notifier.notify)
        app.state.webhooks = notifier
        logger.info(f"[Webhook] Relaying alerts to {len(config.webhook_urls)} URL(s)")

    app.state.monitor = monitor


def create_app(
    monitor: Optional[HealthMonitor] = None,
    config: Optional[MonitorConfig] = None,
    start_monitor: bool = True,
) -> FastAPI:
    """
    Build the API application.

    With no monitor given, the lifespan loads configuration (MONITOR_CONFIG /
    MONITOR_PROBES) and builds one; ConfigLoadError aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Ecosystem Monitor API starting...")

        active_config = config
        active_monitor = monitor
        if active_monitor is None:
            active_config = active_config or get_config() or load_config()
            active_monitor = build_monitor(active_config)
        _wire(app, active_monitor, active_config)

        if start_monitor:
            await active_monitor.start()

        yield

        logger.info("Ecosystem Monitor API shutting down...")
        await active_monitor.stop()

    max_connections = config.ws_max_connections if config else 100

    app = FastAPI(
        title="Ecosystem Monitor API",
        description="Aggregated health and metrics for the control-room dashboard",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.broadcaster = WebSocketBroadcaster(max_connections=max_connections)
    app.state.webhooks = None
    app.state.monitor = monitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _monitor(request: Request) -> HealthMonitor:
    monitor = request.app.state.monitor
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor not initialized")
    return monitor


# ============================================================================
# Endpoints
# ============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        monitor = _monitor(request)
        stats = monitor.get_stats()
        return HealthResponse(
            status="healthy" if monitor.running else "idle",
            timestamp=datetime.now(timezone.utc).isoformat(),
            monitor_running=monitor.running,
            probes_registered=stats["probes_registered"],
            cycles_completed=stats["cycles_completed"],
            cycle_in_progress=stats["cycle_in_progress"],
            websocket_connections=request.app.state.broadcaster.connection_count,
        )

    @app.get("/status", response_model=SnapshotResponse)
    async def get_status(request: Request):
        """Latest aggregate snapshot."""
        snapshot = _monitor(request).latest()
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No aggregation cycle has completed yet")
        return snapshot.to_dict()

    @app.get("/history", response_model=HistoryResponse)
    async def get_history(request: Request, limit: Optional[int] = Query(default=None, ge=0)):
        """Recent snapshots, newest first."""
        history = _monitor(request).history
        snapshots = history.recent(limit)
        return HistoryResponse(
            count=len(snapshots),
            capacity=history.capacity,
            availability=round(history.availability(), 2),
            snapshots=[s.to_dict() for s in snapshots],
        )

    @app.get("/alerts", response_model=List[AlertResponse])
    async def get_alerts(request: Request, limit: Optional[int] = Query(default=None, ge=0)):
        """Recent alerts, newest first."""
        return [event.to_dict() for event in _monitor(request).recent_alerts(limit)]

    @app.get("/probes", response_model=List[ProbeDefinitionResponse])
    async def list_probes(request: Request):
        """Registered probe definitions, in registration order."""
        return [definition.to_dict() for definition in _monitor(request).registry.list()]

    @app.post("/check", response_model=SnapshotResponse)
    async def check_now(request: Request):
        """Run one aggregation cycle immediately."""
        try:
            snapshot = await _monitor(request).check_now()
        except CycleInProgress as e:
            raise HTTPException(status_code=409, detail=str(e))
        return snapshot.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, topics: Optional[str] = None):
        """Live snapshot and alert stream. `topics` is a comma-separated filter."""
        broadcaster: WebSocketBroadcaster = websocket.app.state.broadcaster
        connection_id = str(uuid.uuid4())[:8]
        topic_list = [t.strip() for t in topics.split(",") if t.strip()] if topics else None

        await websocket.accept()
        try:
            await broadcaster.register(connection_id, websocket, topic_list)
        except RuntimeError as e:
            logger.warning(f"[WS] Rejecting connection: {e}")
            await websocket.close(code=1013)
            return

        try:
            monitor = websocket.app.state.monitor
            latest = monitor.latest() if monitor is not None else None
            if latest is not None and (not topic_list or TOPIC_SNAPSHOT in topic_list or "all" in topic_list):
                await websocket.send_json({
                    "topic": TOPIC_SNAPSHOT,
                    "data": latest.to_dict(),
                    "timestamp": latest.timestamp,
                })

            while True:
                message = await websocket.receive_text()
                if message == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.unregister(connection_id)


app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Run the API server."""
    import uvicorn

    setup_logging()

    try:
        config = load_config()
    except ConfigLoadError as e:
        logger.error(f"[Config] {e}")
        sys.exit(2)

    logger.info("=" * 60)
    logger.info("Ecosystem Monitor API Server")
    logger.info("=" * 60)
    logger.info(f"Listening: http://{config.host}:{config.port}")
    logger.info(f"Probes:    {len(config.probes)}")
    logger.info("")
    logger.info("Endpoints:")
    logger.info(f"  GET  http://localhost:{config.port}/health")
    logger.info(f"  GET  http://localhost:{config.port}/status")
    logger.info(f"  GET  http://localhost:{config.port}/history?limit=N")
    logger.info(f"  GET  http://localhost:{config.port}/alerts?limit=N")
    logger.info(f"  GET  http://localhost:{config.port}/probes")
    logger.info(f"  POST http://localhost:{config.port}/check")
    logger.info(f"  WS   ws://localhost:{config.port}/ws")
    logger.info("=" * 60)

    uvicorn.run(
        "ecosystem_monitor.api.server:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
