#!/usr/bin/env python3
"""
InvoiceGen: invoicing, payments and reporting service.
Main application entry point.

Usage:
    python main.py [options]

Run modes:
    - server: Run the HTTP API (default)
    - cli: Run the interactive administration shell
"""

import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict

from config.config_loader import load_config
from storage.database import Database
from utils.logging_config import configure_logging

__version__ = "1.0.0"

RUN_MODE_SERVER = "server"
RUN_MODE_CLI = "cli"


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="InvoiceGen: invoicing and payments service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--env", help="Configuration to load", choices=["development", "staging", "production"],
                        default="development")
    parser.add_argument("--log-level", help="Logging level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], default=None)
    parser.add_argument("--mode", help="Run mode", choices=[RUN_MODE_SERVER, RUN_MODE_CLI], default=RUN_MODE_SERVER)
    parser.add_argument("--host", help="Host for server mode", default=None)
    parser.add_argument("--port", help="Port for server mode", type=int, default=None)
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    return parser.parse_args(argv)


def run_server_mode(config: Dict[str, Any], database: Database, args: argparse.Namespace) -> None:
    """Run in server mode."""
    import uvicorn

    from server.app import create_app

    logger = logging.getLogger("invoicegen.main")
    server_config = config.get("server", {})
    host = args.host or server_config.get("host", "0.0.0.0")
    port = args.port or int(server_config.get("port", 8000))
    logger.info(f"Starting InvoiceGen server on {host}:{port}")

    app = create_app(config, database)
    uvicorn.run(app, host=host, port=port, log_level=(args.log_level or "INFO").lower())


def run_cli_mode(config: Dict[str, Any], database: Database, args: argparse.Namespace) -> None:
    """Run in command line interface mode."""
    from cli.cli_app import run_cli

    logging.getLogger("invoicegen.main").info("Starting InvoiceGen CLI")
    run_cli(config=config, database=database)


RUN_MODES = {
    RUN_MODE_SERVER: run_server_mode,
    RUN_MODE_CLI: run_cli_mode,
}


def setup_signal_handlers() -> None:
    """Exit cleanly on SIGINT and SIGTERM so the database is disposed on the way out."""
    def handle_signal(sig, frame):
        logging.getLogger("invoicegen.main").info(f"{signal.Signals(sig).name} received, shutting down")
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def main(argv=None):
    """Main application entry point."""
    args = parse_arguments(argv)

    if args.version:
        print(f"InvoiceGen version {__version__}")
        sys.exit(0)

    os.environ.setdefault('INVOICEGEN_ENV', args.env)

    config = load_config(env=args.env)
    logging_config = config.get("logging", {})
    configure_logging(log_level=args.log_level or logging_config.get("level"), log_file=logging_config.get("file"))
    logger = logging.getLogger("invoicegen.main")

    logger.info(f"InvoiceGen v{__version__} ({config['environment']}, {args.mode} mode)")

    database = Database.from_config(config)
    database.create_all()

    if args.mode == RUN_MODE_SERVER:
        setup_signal_handlers()
    try:
        RUN_MODES[args.mode](config, database, args)
    finally:
        database.dispose()
        logger.info("InvoiceGen stopped")


if __name__ == "__main__":
    main()
