#
# Copyright 2025 The KumoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Command-line interface for Kumo Local."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

import uvicorn

from .api import KumoLocalAPI
from .const import KUMO_API_TOKEN_REFRESH_INTERVAL, KUMO_KEY, KUMO_LOCAL_TIMEOUT
from .routes import create_app, register_routes

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

# Global variables
kumo_api: Optional[KumoLocalAPI] = None
server: Optional[uvicorn.Server] = None


def parse_address_overrides(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated ``SERIAL=HOST`` options."""
    overrides = {}
    for value in values or []:
        serial, sep, address = value.partition('=')
        if not sep or not serial.strip() or not address.strip():
            raise argparse.ArgumentTypeError(f"Invalid --address value '{value}', expected SERIAL=HOST")
        overrides[serial.strip()] = address.strip()
    return overrides


def uvicorn_log_config(args) -> dict:
    """Configure uvicorn logging to match our format and prevent duplicates."""
    if args.syslog:
        # Syslog mode: disable uvicorn's default logging, use root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        # Daemon mode: simple format without timestamps
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        # Console mode: timestamp + message (clean and readable)
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
            "access": formatter,
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        },
    }


async def run_server(args):
    """Run the Kumo Local server."""
    global kumo_api, server

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        db_path = Path(os.path.expanduser(args.state))

        kumo_api = KumoLocalAPI(
            args.username,
            args.password,
            db_path=str(db_path),
            shared_key=args.shared_key,
            refresh_hours=args.token_refresh_hours,
            local_timeout=args.local_timeout,
            address_overrides=args.address_overrides,
        )

        # A failed first login is not fatal: cached devices still work and
        # the background task keeps retrying
        await kumo_api.initialize()
        kumo_api.start_background_refresh()

        app = create_app()
        register_routes(app, lambda: kumo_api)

        logger.info("*** Kumo Local ready! ***")
        logger.info(f"Devices: {len(kumo_api.registry)}")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    except Exception as e:
        logger.error(f"ERROR: Failed to start Kumo Local: {e}")
        raise
    finally:
        if kumo_api:
            await kumo_api.cleanup()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    """Configure root logging for console, daemon or syslog mode."""
    if args.syslog:
        # Parse syslog address
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))
        # else: Unix socket path (e.g., /dev/log)

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'kumo-local[%(process)d]: %(levelname)s %(message)s'
            ))

            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            # Silence console output in syslog mode
            root_logger.handlers = [syslog_handler]

            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            # Fall back to console if syslog fails
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # Daemon mode: no timestamp - syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Kumo Local - REST API for Mitsubishi Kumo devices (cloud and direct)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start API server (credentials from the environment)
  KUMO_USERNAME=me@example.com KUMO_PASSWORD=secret kumo-local

  # Pin the address of one adapter (e.g. a DHCP reservation the cloud does not know)
  kumo-local --username me@example.com --password secret --address 0123456789=192.168.1.50

  # Run as system daemon
  kumo-local --daemon --pid-file /var/run/kumo-local.pid

  # Debug mode with verbose logging
  kumo-local --verbose

API Endpoints:
  GET  /status                    - Session and registry status
  GET  /devices                   - All known devices
  GET  /devices/{serial}          - Device status via Kumo Cloud
  POST /devices/{serial}/command  - Send command via Kumo Cloud
  GET  /devices/{serial}/status   - Device status via direct access
  PUT  /devices/{serial}/status   - Send command via direct access
  GET  /devices/{serial}/sensors  - Paired wireless sensors
  POST /refresh                   - Log in again and refresh devices
        """
    )
    parser.add_argument("--username", default=os.environ.get("KUMO_USERNAME"),
                        help="Kumo Cloud account (default: $KUMO_USERNAME)")
    parser.add_argument("--password", default=os.environ.get("KUMO_PASSWORD"),
                        help="Kumo Cloud password (default: $KUMO_PASSWORD)")
    parser.add_argument("--state", default="~/.kumo-local.db",
                        help="Path to state database (default: ~/.kumo-local.db)")
    parser.add_argument("--port", type=int, default=4408,
                        help="Port for REST API server (default: 4408)")
    parser.add_argument("--address", action="append", dest="addresses", metavar="SERIAL=HOST",
                        help="Override the network address of a device (repeatable)")
    parser.add_argument("--token-refresh-hours", type=float, default=KUMO_API_TOKEN_REFRESH_INTERVAL,
                        help=f"Renew the cloud token after this many hours (default: {KUMO_API_TOKEN_REFRESH_INTERVAL})")
    parser.add_argument("--local-timeout", type=float, default=KUMO_LOCAL_TIMEOUT,
                        help=f"Timeout in seconds for direct requests (default: {KUMO_LOCAL_TIMEOUT})")
    parser.add_argument("--shared-key", default=os.environ.get("KUMO_SHARED_KEY", KUMO_KEY),
                        help="Hex shared key for direct access tokens (default: firmware key)")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (structured logging for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log, localhost:514, or remote.server:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main():
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.username or not args.password:
        parser.error("Kumo Cloud credentials are required (--username/--password or KUMO_USERNAME/KUMO_PASSWORD)")

    try:
        args.address_overrides = parse_address_overrides(args.addresses)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/kumo-local.pid" if sys.platform != "win32" else "kumo-local.pid"

    configure_logging(args)

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
