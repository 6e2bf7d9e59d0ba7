"""CLI for inspecting and flushing the offline queue."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import load_config
from .engine import SyncEngine


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


async def _open_engine(args: argparse.Namespace) -> SyncEngine:
    config = load_config(args.config)
    engine = SyncEngine.from_config(config)
    engine.storage.connect()
    await engine.queue.load()
    return engine


async def cmd_status(args: argparse.Namespace) -> int:
    """Show queue and connectivity status."""
    engine = await _open_engine(args)
    try:
        await engine.monitor.check()
        status = await engine.get_status()
    finally:
        await engine.close()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Online: {'yes' if status['online'] else 'no'}")
    print(f"Pending items: {status['pending_items']}")
    print(f"Dropped items: {status['dropped_items']}")
    return 0


async def cmd_pending(args: argparse.Namespace) -> int:
    """List queued items."""
    engine = await _open_engine(args)
    try:
        items = await engine.queue.list_all()
    finally:
        await engine.close()

    if args.json:
        print(json.dumps([item.to_dict() for item in items], indent=2))
        return 0

    if not items:
        print("Offline queue is empty")
        return 0

    for item in items:
        attachments = f", {len(item.attachments)} attachments" if item.attachments else ""
        print(
            f"{item.id}  {item.created_at:%Y-%m-%d %H:%M:%S}  "
            f"{item.method} {item.url} [{item.status.value}{attachments}]"
        )
    return 0


async def cmd_dropped(args: argparse.Namespace) -> int:
    """List (or clear) items the server permanently rejected."""
    engine = await _open_engine(args)
    try:
        if args.clear:
            count = await engine.queue.clear_dropped()
            print(f"Cleared {count} dropped items")
            return 0
        dropped = await engine.queue.list_dropped()
    finally:
        await engine.close()

    if args.json:
        print(json.dumps([d.to_dict() for d in dropped], indent=2))
        return 0

    if not dropped:
        print("No dropped items")
        return 0

    for entry in dropped:
        print(
            f"{entry.item.id}  {entry.dropped_at:%Y-%m-%d %H:%M:%S}  "
            f"{entry.item.method} {entry.item.url} -> HTTP {entry.status_code}: {entry.error}"
        )
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync pass now."""
    engine = await _open_engine(args)
    engine.processor.retry_delay_seconds = 0
    try:
        report = await engine.processor.process_queue()
    finally:
        await engine.close()

    print(
        f"Sync {report.status.value}: attempted={report.attempted}, "
        f"delivered={report.succeeded}, dropped={report.dropped}, "
        f"retained={report.retained}"
    )
    return 0 if report.retained == 0 else 2


async def cmd_login(args: argparse.Namespace) -> int:
    """Store the bearer token used for API calls and replays."""
    engine = await _open_engine(args)
    try:
        if args.logout:
            await engine.credential.clear()
            print("Token cleared")
        else:
            await engine.credential.set_token(args.token)
            print("Token stored")
    finally:
        await engine.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="fieldsync",
        description="Inspect and flush the fieldsync offline queue",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    status_parser = subparsers.add_parser("status", help="Show queue and connectivity status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    pending_parser = subparsers.add_parser("pending", help="List queued items")
    pending_parser.add_argument("--json", action="store_true", help="Output as JSON")
    pending_parser.set_defaults(func=cmd_pending)

    dropped_parser = subparsers.add_parser("dropped", help="List permanently rejected items")
    dropped_parser.add_argument("--json", action="store_true", help="Output as JSON")
    dropped_parser.add_argument("--clear", action="store_true", help="Clear the dropped history")
    dropped_parser.set_defaults(func=cmd_dropped)

    sync_parser = subparsers.add_parser("sync", help="Run one sync pass now")
    sync_parser.set_defaults(func=cmd_sync)

    login_parser = subparsers.add_parser("login", help="Store or clear the API token")
    login_group = login_parser.add_mutually_exclusive_group(required=True)
    login_group.add_argument("--token", help="Bearer token to store")
    login_group.add_argument("--logout", action="store_true", help="Clear the stored token")
    login_parser.set_defaults(func=cmd_login)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
