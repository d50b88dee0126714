"""
SignalPro - Strategy Rule Engine and Real-Time Signal Delivery

Usage:
    python main.py --env dev              # In-memory store, simulated feed
    python main.py --env prod             # PostgreSQL store, metrics, market-hours gate
    python main.py --env dev --port 8080 --verbose
    python main.py --watch ws://localhost:5000/ws   # Follow a running server
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from aiohttp import web

from config.config_manager import ConfigManager
from src.application import AppContainer
from src.domain.exceptions import FatalError, StoreError
from src.infrastructure.delivery import SignalChannelClient
from src.utils.logging_setup import (
    flush_all_loggers,
    get_logger,
    setup_category_logging,
    shutdown_logging,
)

logger = get_logger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="SignalPro strategy rule engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --env dev --simulate       # Random-walk feed, presets fire on synthetic data
  python main.py --env prod --port 8080     # Production config on a custom port
  python main.py --watch ws://localhost:5000/ws  # Print signals pushed by a running server
        """,
    )
    parser.add_argument(
        "--env",
        type=str,
        default="dev",
        choices=["dev", "prod"],
        help="Environment to run in (default: dev)",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory holding base.yaml and the environment overrides",
    )
    parser.add_argument("--host", type=str, help="Bind address (overrides server.host)")
    parser.add_argument("--port", type=int, help="HTTP port (overrides server.port)")
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Port for Prometheus /metrics endpoint (overrides metrics.port, 0 to disable)",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        default=None,
        help="Drive the engine with the simulated random-walk feed",
    )
    parser.add_argument(
        "--watch",
        type=str,
        metavar="URL",
        help="Subscribe to a running server's delivery channel (e.g. ws://localhost:5000/ws) instead of serving",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level for all categories)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set log level (overrides logging.level, ignored if --verbose is set)",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Load config, wire services, serve until interrupted."""
    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()

    setup_category_logging(
        env=args.env,
        log_dir=config.logging.dir,
        level=args.log_level or config.logging.level,
        console=config.logging.console,
        verbose=args.verbose,
        timezone=config.logging.timezone,
    )

    if args.watch:
        delivery = config.delivery
        return await watch_async(args.watch, delivery.reconnect_delay_sec, delivery.heartbeat_sec)

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("Starting SignalPro", extra={"env": args.env, "host": host, "port": port})

    container = AppContainer(config, env=args.env, metrics_port=args.metrics_port, simulate=args.simulate)
    runner: Optional[web.AppRunner] = None
    try:
        await container.initialize()

        runner = web.AppRunner(container.web_app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(f"Listening on http://{host}:{port} (websocket {config.server.websocket_path})")

        await container.start()

        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")
    except (FatalError, StoreError) as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        return 1
    finally:
        await container.cleanup()
        if runner is not None:
            await runner.cleanup()
        logger.info("System shutdown complete")
        flush_all_loggers()
        shutdown_logging()
    return 0


async def watch_async(url: str, reconnect_delay: float, heartbeat: Optional[float] = None) -> int:
    """Follow a delivery channel and print a notice per pushed signal until interrupted."""

    def on_signal(payload: dict, notice: str) -> None:
        print(notice, flush=True)

    client = SignalChannelClient(
        url,
        on_signal=on_signal,
        reconnect_delay=reconnect_delay,
        heartbeat_sec=heartbeat,
        on_state_change=lambda state: logger.info(f"Channel {state.value}"),
    )
    try:
        await client.connect()
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")
    finally:
        await client.close()
        flush_all_loggers()
        shutdown_logging()
    return 0


def main() -> None:
    """Main entry point."""
    args = parse_args()
    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        print("Shutdown requested")
        sys.exit(0)


if __name__ == "__main__":
    main()
