"""Main entry point for the gridpilot energy manager and OCPP central system."""

import argparse
import asyncio
import logging
import signal
import sys

from prometheus_client import start_http_server

from .config import DEVICE_KEYS, Settings, load_options, merge_sources
from .database import Database
from .devices import create_device
from .ems import EnergyManager
from .exceptions import ConfigurationError
from .handlers import OcppSessionManager
from .handlers.session_manager import DEFAULT_HEARTBEAT_INTERVAL
from .logging_utils import log_error, setup_logging
from .repositories import SqliteTransactionStore
from .server import OCPPServer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="gridpilot - EV charger load balancing with an OCPP 1.6J central system"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind the WebSocket server (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=9000,
        help="Port to bind the WebSocket server (default: 9000)",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="Path to SQLite database for completed transactions (default: not stored)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write JSON logs to this file",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics HTTP server (default: disabled)",
    )
    parser.add_argument(
        "--heartbeat-interval",
        type=int,
        default=DEFAULT_HEARTBEAT_INTERVAL,
        help=f"OCPP heartbeat interval in seconds (default: {DEFAULT_HEARTBEAT_INTERVAL})",
    )
    parser.add_argument(
        "--disable-websocket-ping",
        action="store_true",
        help="Disable WebSocket ping/pong messages (useful for chargers that don't handle pings well)",
    )

    ems = parser.add_argument_group("energy manager")
    ems.add_argument(
        "--config",
        default=None,
        help="JSON options file with energy manager keys (overridden by the flags below)",
    )
    for key in DEVICE_KEYS.values():
        ems.add_argument(f"--{key}", dest=key, default=None, help=f"Host of the {key}")
        ems.add_argument(
            f"--{key}-type", dest=f"{key}.type", default=None, help=f"Type of the {key}"
        )
    ems.add_argument("--max-current", dest="maxcurrent", default=None, help="Maximum charging current in A (default: 32)")
    ems.add_argument("--min-current", dest="mincurrent", default=None, help="Minimum charging current in A (default: 6)")
    ems.add_argument("--interval", dest="interval", default=None, help="Seconds between control cycles (default: 5)")
    ems.add_argument("--mode", dest="mode", default=None, choices=["auto", "manual"], help="Initial mode (default: auto)")
    ems.add_argument("--manual-current", dest="manualcurrent", default=None, help="Current held in manual mode, in A")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """
    Merge the options file and command-line flags into validated settings.

    Raises:
        ConfigurationError: if any source is invalid
    """
    file_options = load_options(args.config) if args.config else {}
    keys = [*DEVICE_KEYS.values(), *(f"{k}.type" for k in DEVICE_KEYS.values())]
    keys += ["maxcurrent", "mincurrent", "interval", "mode", "manualcurrent"]
    flags = {key: getattr(args, key) for key in keys}
    return Settings.from_mapping(merge_sources(file_options, flags))


def create_energy_manager(settings: Settings) -> EnergyManager:
    devices = {
        kind: create_device(kind, device.host, device.type_name)
        for kind, device in settings.devices.items()
    }
    return EnergyManager(
        settings.energy_manager,
        grid=devices["grid"],
        charger=devices["charger"],
        heat_pump=devices["heat_pump"],
        solar=devices.get("solar"),
        battery=devices.get("battery"),
    )


async def main(argv: list[str] | None = None):
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
        energy_manager = create_energy_manager(settings)
    except ConfigurationError as e:
        parser.error(str(e))

    setup_logging(args.log_level, args.log_file)

    logger.info(
        "System starting",
        extra={
            "event_type": "system_startup",
            "event_data": {
                "database": args.db,
                "websocket_endpoint": f"ws://{args.host}:{args.port}/ocpp/{{cp_id}}",
                "metrics_endpoint": f"http://{args.host}:{args.metrics_port}/metrics"
                if args.metrics_port
                else None,
                "devices": {kind: d.host for kind, d in settings.devices.items()},
                "mode": settings.energy_manager.mode.value,
                "interval": settings.energy_manager.interval,
            },
        },
    )

    if args.metrics_port:
        start_http_server(args.metrics_port)

    db = None
    store = None
    if args.db:
        db = Database(args.db)
        await db.initialize_schema()
        store = SqliteTransactionStore(await db.connect())

    session_manager = OcppSessionManager(store, heartbeat_interval=args.heartbeat_interval)

    # Configure WebSocket ping interval (None disables pings)
    ping_interval = None if args.disable_websocket_ping else 20
    server = OCPPServer(session_manager, host=args.host, port=args.port, ping_interval=ping_interval)

    main_task = asyncio.current_task()
    asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, main_task.cancel)

    try:
        await asyncio.gather(energy_manager.run(), server.start())
    except asyncio.CancelledError:
        logger.info(
            "System shutting down",
            extra={"event_type": "system_shutdown", "event_data": {"reason": "cancelled"}},
        )
    except Exception as e:
        log_error(logger, "server_error", f"Server error: {e}", exc_info=e)
        raise
    finally:
        await server.stop()
        await energy_manager.close()
        if db:
            await db.disconnect()


def run():
    """Entry point for console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete")
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
