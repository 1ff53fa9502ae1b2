#!/usr/bin/env python3
"""
CLI for watching a path and printing its lifecycle events.

Usage:
    python -m src.cli watch /path/to/folder
    python -m src.cli watch ./notes.txt --change-timeout 300
    python -m src.cli watch ./logs --extensions .log .txt
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load .env from project root
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    load_dotenv()

from src.surveil import (
    EventName,
    SurveilConfig,
    get_default_notifier,
    get_default_scheduler,
)
from src.surveil import open as open_session
from src.surveil.exceptions import ConfigError


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def format_event(event: EventName, *args) -> str:
    """Render one semantic event as a tab-separated output line."""
    if event == EventName.LIST:
        return f"{event.value}\t{len(args[0])} entries"
    if event in (EventName.READY, EventName.ERROR):
        return f"{event.value}\t{args[0]}" if args and args[0] else event.value

    name = args[0] if args else None
    return f"{event.value}\t{name if name is not None else '.'}"


def build_config(args) -> SurveilConfig:
    """Environment defaults, overridden by explicit command line flags."""
    overrides = {
        "change_timeout_ms": args.change_timeout,
        "eperm_retries": args.eperm_retries,
        "eperm_easing_ms": args.eperm_easing,
        "missing_poll_ms": args.missing_poll,
        "extensions": args.extensions,
        "patterns": args.patterns,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return SurveilConfig.from_options(SurveilConfig.from_env(), **overrides)


def cmd_watch(args):
    """Watch a path until interrupted."""
    path = Path(args.path).absolute()

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"Invalid options: {e}")
        sys.exit(2)

    def printer(event):
        def _print(*event_args):
            print(format_event(event, *event_args), flush=True)
        return _print

    shutdown = GracefulShutdown()
    listeners = {event: printer(event) for event in EventName}

    session = open_session(path, config, listeners=listeners)
    logger.info(f"Watching {path}")
    if config.has_filter:
        logger.info(f"  extensions={config.extensions} patterns={config.patterns}")
    logger.info("Press Ctrl+C to stop")

    try:
        while not shutdown.should_exit:
            time.sleep(0.2)
    finally:
        session.close()
        get_default_notifier().stop()
        get_default_scheduler().stop()

    logger.info("Watch stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watch a file or directory and print normalized change events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch a directory
  python -m src.cli watch ./documents

  # Watch a file that may not exist yet, polling every 2 seconds
  python -m src.cli watch ./out/report.pdf --missing-poll 2000

  # Only report .bar and .baz files
  python -m src.cli watch ./data --extensions .bar .baz

Defaults can also be set with SURVEIL_* environment variables or a .env file.
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch a path and print events")
    watch_parser.add_argument("path", help="File or directory to watch (may not exist yet)")
    watch_parser.add_argument("--change-timeout", type=int, default=None,
                              help="Debounce window in ms (default: 150)")
    watch_parser.add_argument("--eperm-retries", type=int, default=None,
                              help="Retries for transient permission errors (default: 5)")
    watch_parser.add_argument("--eperm-easing", type=int, default=None,
                              help="Delay between permission retries in ms (default: 300)")
    watch_parser.add_argument("--missing-poll", type=int, default=None,
                              help="Poll interval in ms while the path is missing (default: 1000)")
    filter_group = watch_parser.add_mutually_exclusive_group()
    filter_group.add_argument("--extensions", nargs="+", default=None,
                              help="Only report files ending with one of these suffixes")
    filter_group.add_argument("--patterns", nargs="+", default=None,
                              help="Only report files matching one of these glob patterns")
    watch_parser.set_defaults(func=cmd_watch)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    args.func(args)


if __name__ == "__main__":
    main()
