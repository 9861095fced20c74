"""CLI for the DNS server and the bulk loader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from .config import BACKENDS, LOG_LEVELS, Settings
from .driver import Driver
from .errors import KvdnsError
from .loader import BulkLoader, read_lines
from .logging_config import init_logging
from .server import serve
from .zones import directory_lines

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Options left unset (None) fall back to the YAML configuration.

    Returns:
        argparse.Namespace: Parsed CLI options.
    """
    parser = argparse.ArgumentParser(
        description="Authoritative DNS server backed by Cassandra, Redis or etcd",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", default="kvdns.yaml", help="Path to YAML config")
    parser.add_argument("--db", dest="backend", choices=BACKENDS, help="Backend to use")
    parser.add_argument("--endpoints", help="Comma-separated backend endpoints")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Log level")
    parser.add_argument("--verbose", action="store_true", default=None, help="Log every query")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_cmd = commands.add_parser("serve", help="Answer DNS queries from the backend")
    serve_cmd.add_argument("--host", help="Bind address")
    serve_cmd.add_argument("--port", type=int, help="UDP and TCP port")

    load_cmd = commands.add_parser("load", help="Upload RR lines or zone files to the backend")
    source = load_cmd.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="File of tab-separated RR lines")
    source.add_argument("--zones", help="Directory of zone files")
    load_cmd.add_argument("--workers", type=int, help="Worker threads")
    load_cmd.add_argument("--stop-on-fatal", action="store_true", default=None, help="Stop at the first bad line")
    load_cmd.add_argument("--replace", action="store_true", help="Accepted for compatibility, ignored")
    load_cmd.add_argument("--exit", action="store_true", help="Exit when done instead of waiting for a signal")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from the YAML file with command-line overrides applied."""
    return Settings.load(args.config).override(
        backend=args.backend,
        endpoints=args.endpoints,
        log_level=args.log_level,
        verbose=args.verbose,
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        workers=getattr(args, "workers", None),
        stop_on_fatal=getattr(args, "stop_on_fatal", None),
    )


def run_load(settings: Settings, args: argparse.Namespace) -> int:
    """Run one bulk load; SIGINT/SIGTERM stop it.

    After the source is exhausted the process waits for a signal unless
    ``--exit`` was given.

    Returns:
        int: 0 when every line was stored, 1 otherwise.
    """
    driver = Driver.from_settings(settings)
    driver.connect()
    logger.info("backend %s connected for %s", settings.backend, ",".join(settings.endpoints))

    loader = BulkLoader.from_settings(driver, settings, replace=args.replace)
    finished = threading.Event()

    def on_signal(signum: int, frame: object) -> None:
        logger.info("signal (%s) received, stopping", signal.Signals(signum).name)
        loader.stop()
        finished.set()

    previous = {sig: signal.signal(sig, on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}

    lines = directory_lines(args.zones) if args.zones else read_lines(args.file)
    try:
        stats = loader.run(lines)
        if not args.exit and not finished.is_set():
            logger.info("load complete, waiting for SIGINT or SIGTERM")
            finished.wait()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        driver.disconnect()
    return 0 if stats.failed == 0 and not stats.stopped else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI entry point.

    Returns:
        int: Process exit status.
    """
    args = parse_args(argv)
    try:
        settings = load_settings(args)
    except (ValueError, FileNotFoundError) as exc:
        print(f"kvdns: configuration error: {exc}", file=sys.stderr)
        return 2
    init_logging(settings.log_level)

    try:
        if args.command == "serve":
            asyncio.run(serve(settings))
            return 0
        return run_load(settings, args)
    except (KeyboardInterrupt, SystemExit):
        return 0
    except (KvdnsError, OSError) as exc:
        logger.error("%s", exc)
        return 1
