"""CLI entry point for forgewatch: watch directories and rerun a build command."""

import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from forgewatch import __version__
from forgewatch.config import CONFIG_FILENAME, ConfigError, load_config, run_init_wizard
from forgewatch.controller import WatchController
from forgewatch.file_watcher import WatchdogBackend
from forgewatch.supervisor import NESTED_ENV_VAR
from forgewatch.watchers import BackendError

logger = logging.getLogger("forgewatch")

USAGE = """\
Usage:
  forgewatch <watch_dir> <build_cmd>
  forgewatch init  # to create .forgewatchrc"""


class LevelBadgeFormatter(logging.Formatter):
    """Prefixes warnings and errors with a (optionally coloured) badge."""

    BADGES = {
        logging.DEBUG: ("[DEBUG]", ""),
        logging.WARNING: ("[ WARN ]", "\033[1;43;30m"),
        logging.ERROR: ("[ ERROR ]", "\033[1;41;97m"),
    }

    def __init__(self, color: bool = False):
        super().__init__("%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        level = min(record.levelno, logging.ERROR)
        if level not in self.BADGES:
            return message
        badge, style = self.BADGES[level]
        if self.color and style:
            badge = f"{style}{badge}\033[0m"
        return f"{badge} {message}"


def configure_logging(verbose: bool = False) -> None:
    """Send forgewatch log records to stderr.

    Args:
        verbose: Include debug messages
    """
    color = sys.stderr.isatty() and "NO_COLOR" not in os.environ
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(LevelBadgeFormatter(color=color))

    for existing in list(logger.handlers):
        if isinstance(existing.formatter, LevelBadgeFormatter):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="forgewatch",
        description="Watch directory trees and rerun a build command on every change.",
        epilog="Examples:\n"
        "  forgewatch src 'make && ./app'      # Watch src/, rebuild on change\n"
        "  forgewatch 'src include' make       # Watch several directories\n"
        "  forgewatch init                      # Create .forgewatchrc interactively\n"
        "  forgewatch                           # Use settings from .forgewatchrc",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "watch_dir",
        nargs="?",
        help="Directory to watch (or a quoted, space-separated list), or 'init'",
    )
    parser.add_argument(
        "build_cmd",
        nargs="?",
        help="Shell command to run on every change",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=CONFIG_FILENAME,
        help=f"Path to config file (default: {CONFIG_FILENAME})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every detected change and debounce decision",
    )
    parser.add_argument(
        "--polling",
        action="store_true",
        help="Poll directories instead of using native change notifications",
    )
    parser.add_argument(
        "--no-initial-build",
        action="store_true",
        help="Do not run the build command on startup",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def run_init(config_path: str | Path) -> int:
    """Run the interactive wizard and return the exit code."""
    try:
        path = run_init_wizard(config_path)
    except ConfigError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"Failed to create {config_path}: {e}")
        return 1

    print(f"{path.name} created successfully.")
    return 0


def install_signal_handlers(controller: WatchController) -> None:
    """Route SIGINT/SIGTERM to a shutdown request."""

    def handle(signum, frame):
        controller.request_shutdown()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the forgewatch CLI.

    Handles:
    - Refusing to run nested inside another forgewatch build
    - The init wizard
    - Loading configuration from file or arguments
    - Running the watch loop until interrupted
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    if os.environ.get(NESTED_ENV_VAR) == "1":
        logger.error("Refused to start: already running inside ForgeWatch.")
        sys.exit(1)

    if args.watch_dir == "init" and args.build_cmd is None:
        try:
            sys.exit(run_init(args.config))
        except KeyboardInterrupt:
            sys.exit(130)

    try:
        config = load_config(args.config, args.watch_dir, args.build_cmd)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if config is None:
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    print(f"Watching directory: {' '.join(config.roots)}")
    print(f"Build command: {config.build_command}")
    if config.extensions:
        print(f"Extensions: {' '.join(sorted(config.extensions))}")

    controller = WatchController(config, WatchdogBackend(use_polling=args.polling))
    install_signal_handlers(controller)

    try:
        controller.start(initial_build=not args.no_initial_build)
    except BackendError as e:
        logger.error(str(e))
        controller.shutdown()
        sys.exit(1)

    status = controller.run()
    if status == 0:
        print("\nExited cleanly.")
    sys.exit(status)


if __name__ == "__main__":
    main()
