#!/usr/bin/env python3
"""
Ecosystem Monitor - Control Room Health Aggregation
===================================================

Polls every configured probe on a schedule, folds the results into a single
0-100 health score, emits alerts on status transitions and serves the
dashboard API.

RUN: python3 run_monitor.py --config config/monitor.example.yaml

MODES:
- default:   monitor loop + dashboard API (REST and WebSocket)
- --no-api:  monitor loop only, alerts go to the log and webhooks
- --once:    run a single cycle, print the snapshot as JSON and exit
             (exit status 0 healthy, 1 warning, 2 critical)

A malformed configuration is fatal: the error is logged and the process
exits with status 2 before any probe runs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ecosystem_monitor.api.broadcast import WebhookNotifier
from ecosystem_monitor.api.server import build_monitor, create_app
from ecosystem_monitor.config import ConfigLoadError, MonitorConfig, load_config
from ecosystem_monitor.health import HealthMonitor, HealthStatus
from ecosystem_monitor.utils.logging_config import LoggingConfig, set_context, setup_logging

logger = logging.getLogger("run_monitor")

_EXIT_CODES = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
    HealthStatus.UNKNOWN: 2,
}


async def run_once(monitor: HealthMonitor) -> int:
    """Run one cycle and print the snapshot."""
    snapshot = await monitor.run_cycle()
    print(json.dumps(snapshot.to_dict(), indent=2, default=str))
    return _EXIT_CODES[snapshot.overall_status]


async def run_headless(monitor: HealthMonitor, config: MonitorConfig) -> int:
    """Run the monitor loop without the API until a shutdown signal."""
    if config.webhook_urls:
        notifier = WebhookNotifier(config.webhook_urls, config.webhook_timeout_seconds)
        monitor.add_alert_listener(notifier.notify)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal...")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await monitor.start()
    await shutdown_event.wait()
    await monitor.stop()

    stats = monitor.get_stats()
    logger.info("")
    logger.info("FINAL STATISTICS:")
    logger.info("-" * 50)
    logger.info(f"  Uptime:            {stats['uptime_seconds']:.1f} seconds")
    logger.info(f"  Cycles:            {stats['cycles_completed']}")
    logger.info(f"  Availability:      {stats['history']['availability']:.2f}%")
    logger.info(f"  Alerts retained:   {stats['alerts']['recent_alerts']}")
    logger.info("-" * 50)
    return 0


async def run_server(monitor: HealthMonitor, config: MonitorConfig) -> int:
    """Run the dashboard API; the app lifespan starts and stops the monitor."""
    import uvicorn

    app = create_app(monitor=monitor, config=config)
    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_level="info"))

    logger.info("=" * 60)
    logger.info("Ecosystem Monitor")
    logger.info("=" * 60)
    logger.info(f"  Probes:    {len(monitor.registry)}")
    logger.info(f"  Interval:  {monitor.interval_seconds:.1f}s")
    logger.info(f"  API:       http://localhost:{config.port}")
    logger.info(f"  Stream:    ws://localhost:{config.port}/ws")
    logger.info("=" * 60)

    await server.serve()
    return 0


async def main() -> int:
    """Main entry point for the ecosystem monitor."""
    parser = argparse.ArgumentParser(
        description="Ecosystem Monitor - Control Room Health Aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 run_monitor.py --config config/monitor.example.yaml
  python3 run_monitor.py --once                  # One cycle, JSON to stdout
  python3 run_monitor.py --no-api --interval 15  # Loop only
  python3 run_monitor.py --port 9000             # Custom API port
        """,
    )

    parser.add_argument("--config", type=Path, help="YAML config file (default: $MONITOR_CONFIG)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--no-api", action="store_true", help="Do not start the dashboard API")
    parser.add_argument("--interval", type=float, help="Override the check interval (seconds)")

    # Server
    parser.add_argument("--host", help="API bind host")
    parser.add_argument("--port", type=int, help="API server port")

    # Logging
    parser.add_argument("--log-level", default=os.getenv("MONITOR_LOG_LEVEL", "INFO"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", default=os.getenv("MONITOR_LOG_FORMAT", "rich"),
                        choices=["rich", "json"])
    parser.add_argument("--log-file", type=Path, help="Log file path")

    args = parser.parse_args()

    setup_logging(LoggingConfig(level=args.log_level, format=args.log_format, log_file=args.log_file))
    mode = "once" if args.once else ("headless" if args.no_api else "api")
    set_context(mode=mode)

    try:
        config = load_config(args.config)
        overrides = {}
        if args.interval is not None:
            overrides["check_interval_seconds"] = args.interval
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = args.port
        if overrides:
            config = config.merge(overrides)
            config.validate()
        monitor = build_monitor(config)
    except ConfigLoadError as e:
        logger.error(f"[Config] {e}")
        return 2

    if args.once:
        return await run_once(monitor)
    if args.no_api:
        return await run_headless(monitor, config)
    return await run_server(monitor, config)


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
